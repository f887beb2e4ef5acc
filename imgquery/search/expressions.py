"""Typed boolean expressions over the catalog and their SQL renderer.

The compiler never concatenates user values into SQL.  It builds a small
tree of expression nodes; ``Renderer`` walks the tree once, emits SQL text
and binds every value as a named parameter (``:p0``, ``:p1``, ...).  Column
names in nodes are unqualified; the renderer qualifies them with the alias
of the table in scope (``i`` for ``images``, the child alias inside an
``ExistsIn``).
"""
from __future__ import annotations

import dataclasses
import itertools
from typing import Any, Union

from imgquery.db.schema import IMAGE_ALIAS, ChildTable
from imgquery.search.patterns import ESCAPE_CHAR

EARTH_RADIUS_KM = 6371.0


@dataclasses.dataclass(frozen=True)
class Exact:
    column: str
    value: Any
    nocase: bool = True


@dataclasses.dataclass(frozen=True)
class Pattern:
    column: str
    pattern: str
    prefix_optimizable: bool = True


@dataclasses.dataclass(frozen=True)
class Range:
    """``column`` within ``[low, high]``; a single value when ``high`` is None.

    ``upper_exclusive`` renders ``>= low AND < high`` (used by date-only
    ranges whose upper bound was widened to the next day).
    """

    column: str
    low: Any
    high: Any = None
    upper_exclusive: bool = False


@dataclasses.dataclass(frozen=True)
class Flag:
    column: str
    value: int


@dataclasses.dataclass(frozen=True)
class AnyOf:
    items: tuple["Expr", ...]


@dataclasses.dataclass(frozen=True)
class AllOf:
    items: tuple["Expr", ...]


@dataclasses.dataclass(frozen=True)
class ExistsIn:
    table: ChildTable
    condition: "Expr"


@dataclasses.dataclass(frozen=True)
class Geo:
    """Bounding-box pre-filter plus exact haversine distance check."""

    lat_column: str
    lon_column: str
    latitude: float
    longitude: float
    max_km: float
    lat_box: tuple[float, float]
    # Zero boxes: no longitude pre-filter.  Two boxes: the circle crosses
    # the antimeridian.
    lon_boxes: tuple[tuple[float, float], ...]


Expr = Union[Exact, Pattern, Range, Flag, AnyOf, AllOf, ExistsIn, Geo]


def any_of(items: list[Expr]) -> Expr:
    """OR-group that collapses to its only member."""
    return items[0] if len(items) == 1 else AnyOf(tuple(items))


class Renderer:
    """Render expression trees to SQL, collecting bound parameters."""

    def __init__(self, prefix: str = "p") -> None:
        self.params: dict[str, Any] = {}
        self._prefix = prefix
        self._counter = itertools.count()

    def bind(self, value: Any) -> str:
        name = f"{self._prefix}{next(self._counter)}"
        self.params[name] = value
        return f":{name}"

    def render(self, expr: Expr, alias: str = IMAGE_ALIAS) -> str:
        if isinstance(expr, Exact):
            col = f"{alias}.{expr.column}"
            suffix = " COLLATE NOCASE" if expr.nocase else ""
            return f"{col} = {self.bind(expr.value)}{suffix}"

        if isinstance(expr, Pattern):
            col = f"{alias}.{expr.column}"
            return f"{col} LIKE {self.bind(expr.pattern)} ESCAPE '{ESCAPE_CHAR}'"

        if isinstance(expr, Range):
            return self._render_range(expr, alias)

        if isinstance(expr, Flag):
            return f"{alias}.{expr.column} = {int(expr.value)}"

        if isinstance(expr, AnyOf):
            if not expr.items:
                return "0"
            return "(" + " OR ".join(self.render(e, alias) for e in expr.items) + ")"

        if isinstance(expr, AllOf):
            if not expr.items:
                return "1"
            return "(" + " AND ".join(self.render(e, alias) for e in expr.items) + ")"

        if isinstance(expr, ExistsIn):
            t = expr.table
            inner = self.render(expr.condition, t.alias)
            return (
                f"EXISTS (SELECT 1 FROM {t.name} {t.alias} "
                f"WHERE {t.alias}.image_id = {alias}.id AND {inner})"
            )

        if isinstance(expr, Geo):
            return self._render_geo(expr, alias)

        raise TypeError(f"Unsupported expression node: {expr!r}")

    def _render_range(self, expr: Range, alias: str) -> str:
        col = f"{alias}.{expr.column}"
        guard = f"{col} IS NOT NULL"
        if expr.high is None:
            return f"({guard} AND {col} = {self.bind(expr.low)})"
        if expr.upper_exclusive:
            return (
                f"({guard} AND {col} >= {self.bind(expr.low)} "
                f"AND {col} < {self.bind(expr.high)})"
            )
        return f"({guard} AND {col} BETWEEN {self.bind(expr.low)} AND {self.bind(expr.high)})"

    def _render_geo(self, expr: Geo, alias: str) -> str:
        lat = f"{alias}.{expr.lat_column}"
        lon = f"{alias}.{expr.lon_column}"

        parts = [
            f"{lat} IS NOT NULL",
            f"{lon} IS NOT NULL",
            f"{lat} BETWEEN {self.bind(expr.lat_box[0])} AND {self.bind(expr.lat_box[1])}",
        ]
        lon_ranges = [
            f"{lon} BETWEEN {self.bind(lo)} AND {self.bind(hi)}"
            for lo, hi in expr.lon_boxes
        ]
        if len(lon_ranges) == 1:
            parts.append(lon_ranges[0])
        elif lon_ranges:
            parts.append("(" + " OR ".join(lon_ranges) + ")")

        origin_lat = self.bind(expr.latitude)
        origin_lon = self.bind(expr.longitude)
        dlat = f"(radians({lat}) - radians({origin_lat}))"
        dlon = f"(radians({lon}) - radians({origin_lon}))"
        hav = (
            f"sin({dlat} / 2) * sin({dlat} / 2) + "
            f"cos(radians({origin_lat})) * cos(radians({lat})) * "
            f"sin({dlon} / 2) * sin({dlon} / 2)"
        )
        parts.append(
            f"2 * {EARTH_RADIUS_KM} * asin(sqrt({hav})) <= {self.bind(expr.max_km)}"
        )
        return "(" + " AND ".join(parts) + ")"
