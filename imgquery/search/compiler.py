"""Search criteria → one parameterized SQL query.

Facets compile independently into expression trees and are ANDed: an image
must satisfy every facet that was specified.  Within one facet the tokens
are alternatives and are ORed.  The free-text ``any`` facet is a single OR
group spanning every searchable column and child table, ANDed with the rest.

Results are always ordered by ``path`` so repeated runs against an unchanged
catalog return the same sequence.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

from imgquery.db.schema import (
    CHILD_TABLES,
    FLAG_COLUMNS,
    IMAGE_ALIAS,
    IMAGES_TABLE,
    OBJECT_ROWS,
    OBJECTS,
    PEOPLE,
    PEOPLE_ROWS,
    RANGE_FACET_COLUMNS,
    TEXT_FACET_COLUMNS,
    ChildTable,
)
from imgquery.errors import CriteriaError
from imgquery.search.criteria import FLAG_FACETS, LIST_FACETS, RANGE_FACETS, SearchCriteria
from imgquery.search.expressions import (
    AllOf,
    AnyOf,
    Exact,
    ExistsIn,
    Expr,
    Flag,
    Pattern,
    Range,
    Renderer,
    any_of,
)
from imgquery.search.geo import build_geo
from imgquery.search.patterns import normalize_path_token, translate

log = logging.getLogger(__name__)

# Facets whose tokens always behave as substring searches
_FORCED_WILDCARD_FACETS = {"path_like"}

# Columns of ``images`` searched by the free-text ``any`` facet
_ANY_TEXT_COLUMNS = (
    "short_description",
    "long_description",
    "picture_type",
    "style_type",
    "overall_mood",
    "camera_make",
    "camera_model",
    "path",
)

_EXIF_DATE = re.compile(r"^(\d{4}):(\d{2}):(\d{2})")


@dataclasses.dataclass
class CompiledQuery:
    """SQL conditions (ANDed) plus the parameters bound to them."""

    conditions: list[str]
    params: dict[str, Any]
    sql: str
    full_scan_columns: list[str] = dataclasses.field(default_factory=list)


# ── Per-token and per-facet expressions ──────────────────────────────────────

def token_expression(column: str, token: str, force_wildcards: bool = False) -> Expr:
    """``=`` for exact tokens, ``LIKE`` for wildcard tokens."""
    translated = translate(token, force_wildcards=force_wildcards)
    if translated.exact:
        return Exact(column, translated.pattern)
    return Pattern(column, translated.pattern, translated.prefix_optimizable)


def text_facet(columns: tuple[str, ...], tokens: tuple[str, ...], force_wildcards: bool = False) -> Expr:
    return any_of([
        token_expression(column, token, force_wildcards)
        for token in tokens
        for column in columns
    ])


def child_facet(table: ChildTable, tokens: tuple[str, ...], force_wildcards: bool = False) -> Expr:
    """``EXISTS`` against a child relation, driven by its ``image_id`` index."""
    return ExistsIn(
        table,
        any_of([token_expression(table.match_column, t, force_wildcards) for t in tokens]),
    )


def _parse_date_bound(value: Any) -> tuple[str, date | datetime]:
    """Return ``(sql_text, comparable)``; date-only bounds keep ``date`` type."""
    if isinstance(value, datetime):
        parsed: date | datetime = value
    elif isinstance(value, date):
        parsed = value
    else:
        text = _EXIF_DATE.sub(r"\1-\2-\3", str(value).strip())
        try:
            parsed = date.fromisoformat(text) if len(text) == 10 else datetime.fromisoformat(text)
        except ValueError as exc:
            raise CriteriaError(f"date_taken: cannot parse {value!r} as a date") from exc

    if isinstance(parsed, datetime):
        return parsed.isoformat(sep=" ", timespec="seconds"), parsed
    return parsed.isoformat(), parsed


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def date_range(column: str, values: tuple[Any, ...]) -> Range:
    """Date range; a date-only upper bound includes that whole day."""
    bounds = sorted((_parse_date_bound(v) for v in values), key=lambda b: _as_datetime(b[1]))
    low_text, _ = bounds[0]
    high_text, high = bounds[-1]

    if isinstance(high, datetime):
        if len(bounds) == 1:
            return Range(column, low_text)
        return Range(column, low_text, high_text)

    next_day = (high + timedelta(days=1)).isoformat()
    return Range(column, low_text, next_day, upper_exclusive=True)


def numeric_range(column: str, values: tuple[Any, ...]) -> Range:
    if len(values) == 1:
        return Range(column, values[0])
    low, high = sorted(values)
    return Range(column, low, high)


def facet_expression(criteria: SearchCriteria, name: str) -> Expr | None:
    """Expression for one facet of *criteria*, or None when it is unset."""
    if name in LIST_FACETS:
        tokens = getattr(criteria, name)
        if tokens is None:
            return None
        if name in CHILD_TABLES:
            return child_facet(CHILD_TABLES[name], tokens)
        if name == "path_like":
            tokens = tuple(normalize_path_token(t) for t in tokens)
        return text_facet(TEXT_FACET_COLUMNS[name], tokens, name in _FORCED_WILDCARD_FACETS)

    if name in RANGE_FACETS:
        values = getattr(criteria, name)
        if values is None:
            return None
        column = RANGE_FACET_COLUMNS[name]
        if name == "date_taken":
            return date_range(column, values)
        return numeric_range(column, values)

    if name in FLAG_FACETS:
        if not getattr(criteria, name):
            return None
        column, value = FLAG_COLUMNS[name]
        return Flag(column, value)

    if name == "geo_location":
        if criteria.geo_location is None:
            return None
        return build_geo(*criteria.geo_location)

    if name == "any":
        if criteria.any is None:
            return None
        return any_expression(criteria.any)

    raise CriteriaError(f"Unknown facet: {name}")


def any_expression(tokens: tuple[str, ...]) -> Expr:
    """One OR group over every searchable column and child table."""
    items: list[Expr] = []
    for token in tokens:
        items.extend(
            token_expression(column, token, force_wildcards=True)
            for column in _ANY_TEXT_COLUMNS
        )
        items.extend(
            child_facet(table, (token,), force_wildcards=True)
            for table in CHILD_TABLES.values()
        )
    return AnyOf(tuple(items))


def build_expressions(criteria: SearchCriteria) -> list[tuple[str, Expr]]:
    """``(facet, expression)`` for every active facet, in a stable order."""
    names = list(LIST_FACETS) + list(RANGE_FACETS) + list(FLAG_FACETS) + ["geo_location", "any"]
    result = []
    for name in names:
        expr = facet_expression(criteria, name)
        if expr is not None:
            result.append((name, expr))
    return result


def full_scan_columns(expr: Expr) -> list[str]:
    """Columns that received a leading-wildcard pattern."""
    if isinstance(expr, Pattern):
        return [] if expr.prefix_optimizable else [expr.column]
    if isinstance(expr, (AnyOf, AllOf)):
        return [c for e in expr.items for c in full_scan_columns(e)]
    if isinstance(expr, ExistsIn):
        return [f"{expr.table.name}.{c}" for c in full_scan_columns(expr.condition)]
    return []


# ── Assembly ──────────────────────────────────────────────────────────────────

def _detection_rows_sql(table: ChildTable, label_column: str, key: str, alias: str) -> str:
    """Aggregate a detection child table into one JSON array column."""
    return (
        f"(SELECT json_group_array(json_object("
        f"'{key}', {alias}.{label_column}, 'confidence', {alias}.confidence, "
        f"'x_min', {alias}.x_min, 'y_min', {alias}.y_min, "
        f"'x_max', {alias}.x_max, 'y_max', {alias}.y_max)) "
        f"FROM {table.name} {alias} WHERE {alias}.image_id = {IMAGE_ALIAS}.id)"
    )


SELECT_COLUMNS = ",\n       ".join([
    f"{IMAGE_ALIAS}.*",
    f"{_detection_rows_sql(PEOPLE, 'name', 'name', 'pr')} AS {PEOPLE_ROWS}",
    f"{_detection_rows_sql(OBJECTS, 'label', 'label', 'orow')} AS {OBJECT_ROWS}",
])


def compile_criteria(criteria: SearchCriteria) -> CompiledQuery:
    """Compile *criteria* into a single parameterized SELECT."""
    renderer = Renderer()
    conditions: list[str] = []
    scans: list[str] = []

    for name, expr in build_expressions(criteria):
        conditions.append(renderer.render(expr))
        scans.extend(full_scan_columns(expr))

    sql = f"SELECT {SELECT_COLUMNS}\nFROM {IMAGES_TABLE} {IMAGE_ALIAS}"
    if conditions:
        sql += "\nWHERE " + "\n  AND ".join(conditions)
    sql += f"\nORDER BY {IMAGE_ALIAS}.path"

    if scans:
        log.debug("Leading wildcard forces a full scan of: %s", ", ".join(sorted(set(scans))))
    log.debug("Compiled query:\n%s\nparams=%s", sql, renderer.params)

    return CompiledQuery(
        conditions=conditions,
        params=renderer.params,
        sql=sql,
        full_scan_columns=sorted(set(scans)),
    )
