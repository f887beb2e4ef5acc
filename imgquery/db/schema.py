"""Catalog schema contract — the tables and columns imgquery reads.

The catalog is built and migrated by the indexer, not by imgquery.  This
module only names what the query compiler and the result mapper rely on:

* ``images`` — one row per image, keyed by integer ``id``, with flat scalar
  columns and optional serialized (JSON) sub-documents.
* four child tables keyed by ``image_id``: keywords, people, objects, scenes.

``date_time_original`` and ``date_time_digitized`` must hold ISO text,
``YYYY-MM-DD HH:MM:SS``.  Date bounds (EXIF ``YYYY:MM:DD`` input included)
are normalized to that form and compared as text, which orders
chronologically only for ISO values.
"""
from __future__ import annotations

from typing import NamedTuple

IMAGES_TABLE = "images"
IMAGE_ALIAS = "i"


class ChildTable(NamedTuple):
    name: str
    alias: str
    match_column: str


# ── Child relations ───────────────────────────────────────────────────────────

KEYWORDS = ChildTable("image_keywords", "k", "keyword")
PEOPLE = ChildTable("image_people", "p", "name")
OBJECTS = ChildTable("image_objects", "o", "label")
SCENES = ChildTable("image_scenes", "s", "label")

CHILD_TABLES: dict[str, ChildTable] = {
    "keywords": KEYWORDS,
    "people": PEOPLE,
    "objects": OBJECTS,
    "scenes": SCENES,
}

# ── Column-direct text facets → images columns ───────────────────────────────

TEXT_FACET_COLUMNS: dict[str, tuple[str, ...]] = {
    "description_search": ("short_description", "long_description"),
    "picture_type": ("picture_type",),
    "style_type": ("style_type",),
    "overall_mood": ("overall_mood",),
    "camera_make": ("camera_make",),
    "camera_model": ("camera_model",),
    "path_like": ("path",),
}

# ── Range facets → images columns ────────────────────────────────────────────

RANGE_FACET_COLUMNS: dict[str, str] = {
    "gps_latitude": "gps_latitude",
    "gps_longitude": "gps_longitude",
    "gps_altitude": "gps_altitude",
    "exposure_time": "exposure_time",
    "f_number": "f_number",
    "iso": "iso",
    "focal_length": "focal_length",
    "width": "width",
    "height": "height",
    "date_taken": "date_time_original",
}

# ── Boolean flags → (column, value) ──────────────────────────────────────────

FLAG_COLUMNS: dict[str, tuple[str, int]] = {
    "has_nudity": ("has_nudity", 1),
    "no_nudity": ("has_nudity", 0),
    "has_explicit_content": ("has_explicit_content", 1),
    "no_explicit_content": ("has_explicit_content", 0),
}

LATITUDE_COLUMN = "gps_latitude"
LONGITUDE_COLUMN = "gps_longitude"

# ── Serialized sub-documents ─────────────────────────────────────────────────

METADATA_DOCUMENT = "metadata_json"
DESCRIPTION_DOCUMENT = "description_json"
PEOPLE_DOCUMENT = "people_json"
OBJECTS_DOCUMENT = "objects_json"
SCENES_DOCUMENT = "scenes_json"

# Child rows aggregated into the result row by the assembled SELECT
PEOPLE_ROWS = "people_rows"
OBJECT_ROWS = "object_rows"
