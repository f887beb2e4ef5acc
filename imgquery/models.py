"""Result records returned by a search.

Every field carries the key it has in the catalog's serialized documents
(``metadata={"key": ...}``).  ``to_dict()`` emits that PascalCase shape and
``ImageRecord.from_dict()`` reads it back, so records can be written as
JSON lines and carried over into a later search.
"""
from __future__ import annotations

import dataclasses
from typing import Any


def _f(key: str, default: Any = None, factory: Any = None) -> Any:
    if factory is not None:
        return dataclasses.field(default_factory=factory, metadata={"key": key})
    return dataclasses.field(default=default, metadata={"key": key})


def field_key(cls: type, name: str) -> str:
    """Document key of dataclass field *name*."""
    for f in dataclasses.fields(cls):
        if f.name == name:
            return f.metadata.get("key", name)
    raise KeyError(name)


def to_document(value: Any) -> Any:
    """Recursively convert records to plain JSON-compatible structures."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.metadata.get("key", f.name): to_document(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    return value


# ── Metadata ──────────────────────────────────────────────────────────────────

@dataclasses.dataclass
class CameraInfo:
    make: str | None = _f("Make")
    model: str | None = _f("Model")


@dataclasses.dataclass
class GpsInfo:
    latitude: float | None = _f("Latitude")
    longitude: float | None = _f("Longitude")
    altitude: float | None = _f("Altitude")


@dataclasses.dataclass
class ExposureInfo:
    exposure_time: float | None = _f("ExposureTime")
    f_number: float | None = _f("FNumber")
    iso: int | None = _f("ISO")
    focal_length: float | None = _f("FocalLength")
    flash: int | None = _f("Flash")
    program: int | None = _f("ExposureProgram")
    metering: int | None = _f("MeteringMode")


@dataclasses.dataclass
class BasicInfo:
    bits_per_sample: int | None = _f("BitsPerSample")
    orientation: int | None = _f("Orientation")
    x_resolution: float | None = _f("XResolution")
    y_resolution: float | None = _f("YResolution")
    file_size: int | None = _f("FileSize")
    file_name: str | None = _f("FileName")
    extension: str | None = _f("FileExtension")
    pixel_format: str | None = _f("PixelFormat")
    format: str | None = _f("Format")
    width: int | None = _f("Width")
    height: int | None = _f("Height")


@dataclasses.dataclass
class AuthorInfo:
    artist: str | None = _f("Artist")
    copyright: str | None = _f("Copyright")


@dataclasses.dataclass
class DateTimeInfo:
    original: str | None = _f("DateTimeOriginal")
    digitized: str | None = _f("DateTimeDigitized")


@dataclasses.dataclass
class OtherInfo:
    software: str | None = _f("Software")
    color_space: str | None = _f("ColorSpace")
    resolution_unit: int | None = _f("ResolutionUnit")


@dataclasses.dataclass
class ImageMetadata:
    camera: CameraInfo = _f("Camera", factory=CameraInfo)
    gps: GpsInfo = _f("GPS", factory=GpsInfo)
    exposure: ExposureInfo = _f("Exposure", factory=ExposureInfo)
    basic: BasicInfo = _f("Basic", factory=BasicInfo)
    author: AuthorInfo = _f("Author", factory=AuthorInfo)
    date_time: DateTimeInfo = _f("DateTime", factory=DateTimeInfo)
    other: OtherInfo = _f("Other", factory=OtherInfo)


# ── AI description ────────────────────────────────────────────────────────────

@dataclasses.dataclass
class DescriptionInfo:
    has_explicit_content: bool = _f("HasExplicitContent", False)
    has_nudity: bool = _f("HasNudity", False)
    picture_type: str | None = _f("PictureType")
    overall_mood: str | None = _f("OverallMood")
    style_type: str | None = _f("StyleType")
    keywords: list[str] = _f("Keywords", factory=list)
    short_description: str | None = _f("ShortDescription")
    long_description: str | None = _f("LongDescription")


# ── Detections ────────────────────────────────────────────────────────────────

@dataclasses.dataclass
class FacePrediction:
    confidence: float = _f("Confidence", 0.0)
    bbox: list[int] | None = _f("BBox")
    user_id: str | None = _f("UserId")


@dataclasses.dataclass
class PeopleInfo:
    count: int = _f("Count", 0)
    faces: list[str] = _f("Faces", factory=list)
    predictions: list[FacePrediction] = _f("Predictions", factory=list)
    success: bool = _f("Success", False)


@dataclasses.dataclass
class ObjectPrediction:
    confidence: float = _f("Confidence", 0.0)
    bbox: list[int] | None = _f("BBox")
    label: str | None = _f("Label")


@dataclasses.dataclass
class ObjectsInfo:
    count: int = _f("Count", 0)
    predictions: list[ObjectPrediction] = _f("Predictions", factory=list)
    label_counts: dict[str, int] = _f("LabelCounts", factory=dict)


@dataclasses.dataclass
class SceneInfo:
    label: str = _f("Label", "unknown")
    confidence: float = _f("Confidence", 0.0)
    confidence_percentage: float = _f("ConfidencePercentage", 0.0)
    success: bool = _f("Success", False)

    @classmethod
    def unknown(cls) -> "SceneInfo":
        """The "no scene" sentinel."""
        return cls(label="unknown", confidence=0.0, confidence_percentage=0.0, success=False)


# ── Record ────────────────────────────────────────────────────────────────────

@dataclasses.dataclass
class ImageRecord:
    path: str = _f("Path", "")
    width: int | None = _f("Width")
    height: int | None = _f("Height")
    metadata: ImageMetadata = _f("Metadata", factory=ImageMetadata)
    description: DescriptionInfo = _f("Description", factory=DescriptionInfo)
    people: PeopleInfo = _f("People", factory=PeopleInfo)
    objects: ObjectsInfo = _f("Objects", factory=ObjectsInfo)
    scenes: SceneInfo = _f("Scenes", factory=SceneInfo)

    def to_dict(self) -> dict[str, Any]:
        return to_document(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageRecord":
        from imgquery.search.mapper import record_from_document
        return record_from_document(data)
