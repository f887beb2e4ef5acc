"""Search criteria — the immutable input of one search invocation."""
from __future__ import annotations

import dataclasses
from typing import Any, Mapping

from imgquery.errors import CriteriaError

# ── Facet groups ──────────────────────────────────────────────────────────────

LIST_FACETS = (
    "description_search",
    "keywords",
    "people",
    "objects",
    "scenes",
    "picture_type",
    "style_type",
    "overall_mood",
    "path_like",
    "camera_make",
    "camera_model",
)

RANGE_FACETS = (
    "gps_latitude",
    "gps_longitude",
    "gps_altitude",
    "exposure_time",
    "f_number",
    "iso",
    "focal_length",
    "width",
    "height",
    "date_taken",
)

FLAG_FACETS = (
    "has_nudity",
    "no_nudity",
    "has_explicit_content",
    "no_explicit_content",
)

# Facets whose matches live in per-detection sub-elements that the
# confidence post-filter can remove.
DETECTION_FACETS = ("people", "objects", "scenes")

# Names used by the catalog's original tooling → field names
_ALIASES: dict[str, str] = {
    "DescriptionSearch": "description_search",
    "Keywords": "keywords",
    "People": "people",
    "Objects": "objects",
    "Scenes": "scenes",
    "PictureType": "picture_type",
    "StyleType": "style_type",
    "OverallMood": "overall_mood",
    "PathLike": "path_like",
    "CameraMake": "camera_make",
    "CameraModel": "camera_model",
    "GPSLatitude": "gps_latitude",
    "GPSLongitude": "gps_longitude",
    "GPSAltitude": "gps_altitude",
    "ExposureTime": "exposure_time",
    "FNumber": "f_number",
    "ISO": "iso",
    "FocalLength": "focal_length",
    "Width": "width",
    "Height": "height",
    "DateTaken": "date_taken",
    "HasNudity": "has_nudity",
    "NoNudity": "no_nudity",
    "HasExplicitContent": "has_explicit_content",
    "NoExplicitContent": "no_explicit_content",
    "GeoLocation": "geo_location",
    "Any": "any",
    "MinConfidenceRatio": "min_confidence_ratio",
}


def _as_tokens(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    tokens = tuple(str(v) for v in value if v is not None and str(v) != "")
    return tokens or None


def _as_range(name: str, value: Any) -> tuple[Any, ...] | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        values = tuple(value)
    else:
        values = (value,)
    if not 1 <= len(values) <= 2:
        raise CriteriaError(
            f"{name}: expected a single value or a [min, max] pair, got {len(values)} values"
        )
    if any(v is None for v in values):
        raise CriteriaError(f"{name}: range bounds cannot be null")
    return values


@dataclasses.dataclass(frozen=True)
class SearchCriteria:
    """All filters of one search.  Unset facets mean "don't care".

    List facets hold wildcard tokens (``*``/``?``); several tokens within a
    facet are alternatives, separate facets must all match.
    """

    description_search: tuple[str, ...] | None = None
    keywords: tuple[str, ...] | None = None
    people: tuple[str, ...] | None = None
    objects: tuple[str, ...] | None = None
    scenes: tuple[str, ...] | None = None
    picture_type: tuple[str, ...] | None = None
    style_type: tuple[str, ...] | None = None
    overall_mood: tuple[str, ...] | None = None
    path_like: tuple[str, ...] | None = None
    camera_make: tuple[str, ...] | None = None
    camera_model: tuple[str, ...] | None = None

    gps_latitude: tuple[Any, ...] | None = None
    gps_longitude: tuple[Any, ...] | None = None
    gps_altitude: tuple[Any, ...] | None = None
    exposure_time: tuple[Any, ...] | None = None
    f_number: tuple[Any, ...] | None = None
    iso: tuple[Any, ...] | None = None
    focal_length: tuple[Any, ...] | None = None
    width: tuple[Any, ...] | None = None
    height: tuple[Any, ...] | None = None
    date_taken: tuple[Any, ...] | None = None

    has_nudity: bool = False
    no_nudity: bool = False
    has_explicit_content: bool = False
    no_explicit_content: bool = False

    geo_location: tuple[float, float, float] | None = None
    any: tuple[str, ...] | None = None
    min_confidence_ratio: float | None = None

    def __post_init__(self) -> None:
        for name in LIST_FACETS + ("any",):
            object.__setattr__(self, name, _as_tokens(getattr(self, name)))
        for name in RANGE_FACETS:
            object.__setattr__(self, name, _as_range(name, getattr(self, name)))
        for name in FLAG_FACETS:
            object.__setattr__(self, name, bool(getattr(self, name)))

        if self.has_nudity and self.no_nudity:
            raise CriteriaError("has_nudity and no_nudity are mutually exclusive")
        if self.has_explicit_content and self.no_explicit_content:
            raise CriteriaError(
                "has_explicit_content and no_explicit_content are mutually exclusive"
            )

        if self.min_confidence_ratio is not None:
            ratio = float(self.min_confidence_ratio)
            if not 0.0 <= ratio <= 1.0:
                raise CriteriaError(f"min_confidence_ratio must be within [0, 1], got {ratio}")
            object.__setattr__(self, "min_confidence_ratio", ratio)

        if self.geo_location is not None:
            try:
                lat, lon, meters = (float(v) for v in self.geo_location)
            except (TypeError, ValueError) as exc:
                raise CriteriaError(
                    "geo_location must be (latitude, longitude, max_distance_meters)"
                ) from exc
            if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
                raise CriteriaError(f"geo_location coordinates out of range: {lat}, {lon}")
            if meters <= 0:
                raise CriteriaError("geo_location distance must be positive")
            object.__setattr__(self, "geo_location", (lat, lon, meters))

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SearchCriteria":
        """Build criteria from snake_case or original PascalCase names."""
        fields = {f.name for f in dataclasses.fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in fields:
                raise CriteriaError(f"Unknown search criterion: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    # ── Introspection ─────────────────────────────────────────────────────

    def active_facets(self) -> list[str]:
        """Names of all facets that constrain the result."""
        active = [n for n in LIST_FACETS + RANGE_FACETS if getattr(self, n) is not None]
        active.extend(n for n in FLAG_FACETS if getattr(self, n))
        if self.geo_location is not None:
            active.append("geo_location")
        if self.any is not None:
            active.append("any")
        return active

    def describe(self) -> str:
        """Short human summary, e.g. for "no results for ..." messages."""
        parts = []
        for name in self.active_facets():
            value = getattr(self, name)
            if isinstance(value, tuple):
                value = ", ".join(str(v) for v in value)
            parts.append(f"{name}={value}")
        if self.min_confidence_ratio is not None:
            parts.append(f"min_confidence_ratio={self.min_confidence_ratio}")
        return "; ".join(parts) or "(no filters)"
