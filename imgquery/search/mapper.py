"""Result mapper — one catalog row → one nested ``ImageRecord``.

The catalog has stored the same information in two shapes over time:

* flat scalar columns on ``images`` (plus the detection child tables), and
* serialized JSON sub-documents (``metadata_json``, ``people_json``, ...).

For every nested group the sub-document wins field by field; a field that
is missing or null there falls back to its flat column, and only then to the
group's default.  ``merge_group`` implements that precedence for one group
and is independent of any database.

A malformed sub-document never aborts the search: it is logged and treated
as absent.
"""
from __future__ import annotations

import base64
import dataclasses
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Mapping

from imgquery.db.schema import (
    DESCRIPTION_DOCUMENT,
    METADATA_DOCUMENT,
    OBJECT_ROWS,
    OBJECTS_DOCUMENT,
    PEOPLE_DOCUMENT,
    PEOPLE_ROWS,
    SCENES_DOCUMENT,
)
from imgquery.models import (
    AuthorInfo,
    BasicInfo,
    CameraInfo,
    DateTimeInfo,
    DescriptionInfo,
    ExposureInfo,
    FacePrediction,
    GpsInfo,
    ImageMetadata,
    ImageRecord,
    ObjectPrediction,
    ObjectsInfo,
    OtherInfo,
    PeopleInfo,
    SceneInfo,
    field_key,
)

log = logging.getLogger(__name__)

MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}
DEFAULT_MIME_TYPE = "image/jpeg"


# ── Coercion ──────────────────────────────────────────────────────────────────

def _text(value: Any) -> str:
    return str(value)


def _int(value: Any) -> int:
    if isinstance(value, str):
        return int(float(value))
    return int(value)


def _float(value: Any) -> float:
    return float(value)


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0", ""):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [str(v) for v in value if v is not None]


Coerce = Callable[[Any], Any]
# (attribute, flat column or None, coercion)
FieldSpec = tuple[str, "str | None", Coerce]


# ── Document helpers ──────────────────────────────────────────────────────────

def load_document(raw: Any, name: str = "document") -> Any:
    """Parse a serialized sub-document; ``None`` when absent or malformed."""
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        log.warning("Ignoring malformed %s: %s", name, exc)
        return None


def doc_get(document: Any, key: str) -> Any:
    """Case-insensitive lookup; ``None`` when *document* is not a mapping."""
    if not isinstance(document, Mapping):
        return None
    if key in document:
        return document[key]
    lowered = key.lower()
    for k, v in document.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return None


def _coerced(value: Any, coerce: Coerce, where: str) -> Any:
    if value is None:
        return None
    try:
        return coerce(value)
    except (TypeError, ValueError, json.JSONDecodeError) as exc:
        log.warning("Ignoring unusable value for %s: %r (%s)", where, value, exc)
        return None


def merge_group(
    cls: type,
    document: Any,
    flat: Mapping[str, Any],
    fields: list[FieldSpec],
) -> Any:
    """Build *cls* from *document*, falling back to *flat* field by field.

    A null in either source never overrides a value from the other; a field
    absent from both keeps the dataclass default.
    """
    values: dict[str, Any] = {}
    for attr, column, coerce in fields:
        key = field_key(cls, attr)
        value = _coerced(doc_get(document, key), coerce, f"{cls.__name__}.{key}")
        if value is None and column is not None:
            value = _coerced(flat.get(column), coerce, column)
        if value is not None:
            values[attr] = value
    return cls(**values)


# ── Metadata ──────────────────────────────────────────────────────────────────

METADATA_FIELDS: dict[str, tuple[type, list[FieldSpec]]] = {
    "camera": (CameraInfo, [
        ("make", "camera_make", _text),
        ("model", "camera_model", _text),
    ]),
    "gps": (GpsInfo, [
        ("latitude", "gps_latitude", _float),
        ("longitude", "gps_longitude", _float),
        ("altitude", "gps_altitude", _float),
    ]),
    "exposure": (ExposureInfo, [
        ("exposure_time", "exposure_time", _float),
        ("f_number", "f_number", _float),
        ("iso", "iso", _int),
        ("focal_length", "focal_length", _float),
        ("flash", "flash", _int),
        ("program", "exposure_program", _int),
        ("metering", "metering_mode", _int),
    ]),
    "basic": (BasicInfo, [
        ("bits_per_sample", "bits_per_sample", _int),
        ("orientation", "orientation", _int),
        ("x_resolution", "x_resolution", _float),
        ("y_resolution", "y_resolution", _float),
        ("file_size", "file_size", _int),
        ("file_name", "file_name", _text),
        ("extension", "file_extension", _text),
        ("pixel_format", "pixel_format", _text),
        ("format", "format", _text),
        ("width", "width", _int),
        ("height", "height", _int),
    ]),
    "author": (AuthorInfo, [
        ("artist", "artist", _text),
        ("copyright", "copyright", _text),
    ]),
    "date_time": (DateTimeInfo, [
        ("original", "date_time_original", _text),
        ("digitized", "date_time_digitized", _text),
    ]),
    "other": (OtherInfo, [
        ("software", "software", _text),
        ("color_space", "color_space", _text),
        ("resolution_unit", "resolution_unit", _int),
    ]),
}

DESCRIPTION_FIELDS: list[FieldSpec] = [
    ("has_explicit_content", "has_explicit_content", _bool),
    ("has_nudity", "has_nudity", _bool),
    ("picture_type", "picture_type", _text),
    ("overall_mood", "overall_mood", _text),
    ("style_type", "style_type", _text),
    ("short_description", "short_description", _text),
    ("long_description", "long_description", _text),
]


def map_metadata(document: Any, flat: Mapping[str, Any]) -> ImageMetadata:
    groups = {}
    for attr, (cls, fields) in METADATA_FIELDS.items():
        sub = doc_get(document, field_key(ImageMetadata, attr))
        groups[attr] = merge_group(cls, sub, flat, fields)
    return ImageMetadata(**groups)


def parse_keywords(value: Any) -> list[str]:
    """Keywords from a JSON array (or a list); unparseable → ``[]``."""
    if value is None:
        return []
    try:
        return _str_list(value)
    except (TypeError, ValueError) as exc:
        log.warning("Ignoring malformed keyword list %r: %s", value, exc)
        return []


def map_description(document: Any, flat: Mapping[str, Any]) -> DescriptionInfo:
    info = merge_group(DescriptionInfo, document, flat, DESCRIPTION_FIELDS)
    keywords = doc_get(document, field_key(DescriptionInfo, "keywords"))
    if keywords is None:
        keywords = flat.get("keywords")
    info.keywords = parse_keywords(keywords)
    return info


# ── Detections ────────────────────────────────────────────────────────────────

def _bbox(item: Mapping[str, Any]) -> list[int] | None:
    box = doc_get(item, "BBox")
    if not (isinstance(box, (list, tuple)) and len(box) == 4):
        box = [doc_get(item, k) for k in ("x_min", "y_min", "x_max", "y_max")]
    if any(v is None for v in box):
        return None
    try:
        return [int(v) for v in box]
    except (TypeError, ValueError):
        log.warning("Ignoring malformed bounding box %r", box)
        return None


def _confidence(item: Mapping[str, Any]) -> float:
    value = _coerced(doc_get(item, "Confidence"), _float, "Confidence")
    return 0.0 if value is None else value


def face_prediction(item: Mapping[str, Any]) -> FacePrediction:
    user_id = doc_get(item, "UserId")
    if user_id is None:
        user_id = doc_get(item, "name")
    return FacePrediction(
        confidence=_confidence(item),
        bbox=_bbox(item),
        user_id=None if user_id is None else str(user_id),
    )


def object_prediction(item: Mapping[str, Any]) -> ObjectPrediction:
    label = doc_get(item, "Label")
    return ObjectPrediction(
        confidence=_confidence(item),
        bbox=_bbox(item),
        label=None if label is None else str(label),
    )


def _prediction_list(document: Any, fallback_rows: Any, build: Callable[[Mapping], Any]) -> list:
    items = doc_get(document, "Predictions")
    if not isinstance(items, list):
        items = fallback_rows if isinstance(fallback_rows, list) else []
    return [build(item) for item in items if isinstance(item, Mapping)]


def label_tally(labels: list[str | None]) -> dict[str, int]:
    return dict(Counter(label for label in labels if label))


def map_people(document: Any, flat: Mapping[str, Any], rows: Any) -> PeopleInfo:
    predictions = _prediction_list(document, rows, face_prediction)

    faces = doc_get(document, "Faces")
    faces = (
        parse_keywords(faces) if faces is not None
        else [p.user_id for p in predictions if p.user_id]
    )

    count = _coerced(doc_get(document, "Count"), _int, "People.Count")
    if count is None:
        count = _coerced(flat.get("people_count"), _int, "people_count")
    if count is None:
        count = len(predictions)

    success = _coerced(doc_get(document, "Success"), _bool, "People.Success")
    if success is None:
        success = flat.get("people_count") is not None or bool(predictions)

    return PeopleInfo(count=count, faces=faces, predictions=predictions, success=success)


def map_objects(document: Any, flat: Mapping[str, Any], rows: Any) -> ObjectsInfo:
    predictions = _prediction_list(document, rows, object_prediction)

    count = _coerced(doc_get(document, "Count"), _int, "Objects.Count")
    if count is None:
        count = _coerced(flat.get("objects_count"), _int, "objects_count")
    if count is None:
        count = len(predictions)

    label_counts = doc_get(document, "LabelCounts")
    if isinstance(label_counts, Mapping):
        tally = {}
        for label, value in label_counts.items():
            n = _coerced(value, _int, f"Objects.LabelCounts[{label}]")
            if n is not None:
                tally[str(label)] = n
        label_counts = tally
    else:
        label_counts = label_tally([p.label for p in predictions])

    return ObjectsInfo(count=count, predictions=predictions, label_counts=label_counts)


def map_scene(document: Any, flat: Mapping[str, Any]) -> SceneInfo:
    label = _coerced(doc_get(document, "Label"), _text, "Scenes.Label")
    if label is None:
        label = _coerced(flat.get("scene_label"), _text, "scene_label")
    if label is None:
        return SceneInfo.unknown()

    confidence = _coerced(doc_get(document, "Confidence"), _float, "Scenes.Confidence")
    if confidence is None:
        confidence = _coerced(flat.get("scene_confidence"), _float, "scene_confidence")
    if confidence is None:
        confidence = 0.0

    percentage = _coerced(
        doc_get(document, "ConfidencePercentage"), _float, "Scenes.ConfidencePercentage"
    )
    if percentage is None:
        percentage = round(confidence * 100.0, 2)

    success = _coerced(doc_get(document, "Success"), _bool, "Scenes.Success")
    if success is None:
        success = label != "unknown"

    return SceneInfo(
        label=label,
        confidence=confidence,
        confidence_percentage=percentage,
        success=success,
    )


# ── Image embedding ───────────────────────────────────────────────────────────

def mime_type_for(path: str) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


def embed_image(path: str) -> str:
    """Return a base64 ``data:`` URI for *path*, or *path* itself on failure."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        log.warning("Cannot embed %s, keeping path: %s", path, exc)
        return path
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type_for(path)};base64,{encoded}"


# ── Rows and documents ────────────────────────────────────────────────────────

def row_to_dict(row: Any) -> dict[str, Any]:
    """Named-column access for ``sqlite3.Row`` and plain mappings alike."""
    if isinstance(row, Mapping):
        return dict(row)
    return {key: row[key] for key in row.keys()}


def map_row(row: Any) -> ImageRecord:
    """Build the nested record for one catalog row.

    Image embedding is applied later by the engine, after deduplication,
    since deduplication keys on the original path.
    """
    flat = row_to_dict(row)
    path = flat.get("path")

    metadata = map_metadata(load_document(flat.get(METADATA_DOCUMENT), f"{METADATA_DOCUMENT} of {path}"), flat)
    description = map_description(
        load_document(flat.get(DESCRIPTION_DOCUMENT), f"{DESCRIPTION_DOCUMENT} of {path}"), flat
    )
    people = map_people(
        load_document(flat.get(PEOPLE_DOCUMENT), f"{PEOPLE_DOCUMENT} of {path}"),
        flat,
        load_document(flat.get(PEOPLE_ROWS), f"{PEOPLE_ROWS} of {path}"),
    )
    objects = map_objects(
        load_document(flat.get(OBJECTS_DOCUMENT), f"{OBJECTS_DOCUMENT} of {path}"),
        flat,
        load_document(flat.get(OBJECT_ROWS), f"{OBJECT_ROWS} of {path}"),
    )
    scenes = map_scene(load_document(flat.get(SCENES_DOCUMENT), f"{SCENES_DOCUMENT} of {path}"), flat)

    width = _coerced(flat.get("width"), _int, "width")
    height = _coerced(flat.get("height"), _int, "height")

    return ImageRecord(
        path="" if path is None else str(path),
        width=metadata.basic.width if width is None else width,
        height=metadata.basic.height if height is None else height,
        metadata=metadata,
        description=description,
        people=people,
        objects=objects,
        scenes=scenes,
    )


def record_from_document(data: Mapping[str, Any]) -> ImageRecord:
    """Rebuild a record from its ``to_dict()`` shape (e.g. a JSON line)."""
    empty: dict[str, Any] = {}
    metadata = map_metadata(doc_get(data, "Metadata"), empty)
    path = doc_get(data, "Path")
    width = _coerced(doc_get(data, "Width"), _int, "Width")
    height = _coerced(doc_get(data, "Height"), _int, "Height")
    return ImageRecord(
        path="" if path is None else str(path),
        width=metadata.basic.width if width is None else width,
        height=metadata.basic.height if height is None else height,
        metadata=metadata,
        description=map_description(doc_get(data, "Description"), empty),
        people=map_people(doc_get(data, "People"), empty, None),
        objects=map_objects(doc_get(data, "Objects"), empty, None),
        scenes=map_scene(doc_get(data, "Scenes"), empty),
    )


def replace_path(record: ImageRecord, path: str) -> ImageRecord:
    return dataclasses.replace(record, path=path)
