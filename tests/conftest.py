"""Shared fixtures: a small on-disk image catalog.

imgquery only reads the catalog; the DDL below mirrors what the indexer
creates so the search can be exercised end to end.
"""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import pytest

CATALOG_DDL = """
CREATE TABLE images (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    path                 TEXT    NOT NULL UNIQUE,
    width                INTEGER,
    height               INTEGER,
    short_description    TEXT,
    long_description     TEXT,
    picture_type         TEXT,
    overall_mood         TEXT,
    style_type           TEXT,
    has_nudity           INTEGER,
    has_explicit_content INTEGER,
    keywords             TEXT,   -- JSON array
    camera_make          TEXT,
    camera_model         TEXT,
    gps_latitude         REAL,
    gps_longitude        REAL,
    gps_altitude         REAL,
    exposure_time        REAL,
    f_number             REAL,
    iso                  INTEGER,
    focal_length         REAL,
    flash                INTEGER,
    exposure_program     INTEGER,
    metering_mode        INTEGER,
    bits_per_sample      INTEGER,
    orientation          INTEGER,
    x_resolution         REAL,
    y_resolution         REAL,
    file_size            INTEGER,
    file_name            TEXT,
    file_extension       TEXT,
    pixel_format         TEXT,
    format               TEXT,
    artist               TEXT,
    copyright            TEXT,
    date_time_original   TEXT,
    date_time_digitized  TEXT,
    software             TEXT,
    color_space          TEXT,
    resolution_unit      INTEGER,
    people_count         INTEGER,
    objects_count        INTEGER,
    scene_label          TEXT,
    scene_confidence     REAL,
    metadata_json        TEXT,
    description_json     TEXT,
    people_json          TEXT,
    objects_json         TEXT,
    scenes_json          TEXT
);
CREATE INDEX idx_images_lat_lon ON images(gps_latitude, gps_longitude);

CREATE TABLE image_keywords (
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    keyword  TEXT    NOT NULL
);
CREATE INDEX idx_image_keywords ON image_keywords(image_id);

CREATE TABLE image_people (
    image_id   INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    name       TEXT    NOT NULL,
    confidence REAL,
    x_min INTEGER, y_min INTEGER, x_max INTEGER, y_max INTEGER
);
CREATE INDEX idx_image_people ON image_people(image_id);

CREATE TABLE image_objects (
    image_id   INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    label      TEXT    NOT NULL,
    confidence REAL,
    x_min INTEGER, y_min INTEGER, x_max INTEGER, y_max INTEGER
);
CREATE INDEX idx_image_objects ON image_objects(image_id);

CREATE TABLE image_scenes (
    image_id   INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    label      TEXT    NOT NULL,
    confidence REAL
);
CREATE INDEX idx_image_scenes ON image_scenes(image_id);
"""


def insert_image(
    conn: sqlite3.Connection,
    path: str,
    keywords: list[str] | tuple[str, ...] = (),
    people: list[tuple[str, float, list[int]]] | tuple = (),
    objects: list[tuple[str, float, list[int]]] | tuple = (),
    scene: tuple[str, float] | None = None,
    flat_detections: bool = True,
    **columns: Any,
) -> int:
    """Insert one image plus its child rows; returns the image id.

    With *flat_detections* the people/object/scene counters on ``images``
    are filled from the detections (the flat storage shape).
    """
    data: dict[str, Any] = {"path": path, **columns}
    if keywords and "keywords" not in data:
        data["keywords"] = json.dumps(list(keywords))
    if flat_detections:
        if people:
            data.setdefault("people_count", len(people))
        if objects:
            data.setdefault("objects_count", len(objects))
        if scene:
            data.setdefault("scene_label", scene[0])
            data.setdefault("scene_confidence", scene[1])
    for key in ("metadata_json", "description_json", "people_json", "objects_json", "scenes_json"):
        if isinstance(data.get(key), (dict, list)):
            data[key] = json.dumps(data[key])

    cols = ", ".join(data)
    placeholders = ", ".join(["?"] * len(data))
    cur = conn.execute(f"INSERT INTO images ({cols}) VALUES ({placeholders})", list(data.values()))
    image_id = cur.lastrowid

    conn.executemany(
        "INSERT INTO image_keywords (image_id, keyword) VALUES (?, ?)",
        [(image_id, k) for k in keywords],
    )
    conn.executemany(
        "INSERT INTO image_people (image_id, name, confidence, x_min, y_min, x_max, y_max) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        [(image_id, name, conf, *box) for name, conf, box in people],
    )
    conn.executemany(
        "INSERT INTO image_objects (image_id, label, confidence, x_min, y_min, x_max, y_max) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        [(image_id, label, conf, *box) for label, conf, box in objects],
    )
    if scene:
        conn.execute(
            "INSERT INTO image_scenes (image_id, label, confidence) VALUES (?, ?, ?)",
            [image_id, scene[0], scene[1]],
        )
    conn.commit()
    return image_id


@pytest.fixture
def add_image():
    """``add_image(conn, path, ...)``; see ``insert_image``."""
    return insert_image


@pytest.fixture
def catalog_path(tmp_path) -> Path:
    """Path of an empty catalog with the full schema."""
    path = tmp_path / "images.en.db"
    conn = sqlite3.connect(str(path))
    conn.executescript(CATALOG_DDL)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def catalog(catalog_path):
    """Writable connection to the empty catalog (for seeding in tests)."""
    conn = sqlite3.connect(str(catalog_path))
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


@pytest.fixture
def sample_catalog(catalog):
    """A handful of images covering every facet."""
    insert_image(
        catalog, "/photos/a_sunset.jpg",
        keywords=["sunset", "beach"], has_nudity=0, has_explicit_content=0,
        short_description="Sunset over the sea", picture_type="landscape",
        camera_make="Canon", camera_model="EOS R5", iso=100, f_number=8.0,
        gps_latitude=52.0, gps_longitude=5.0, date_time_original="2024-06-15 20:45:00",
        width=1920, height=1080,
        scene=("beach", 0.91),
    )
    insert_image(
        catalog, "/photos/b_sunset.jpg",
        keywords=["sunset", "city"], has_nudity=1, has_explicit_content=0,
        short_description="City skyline at dusk", picture_type="cityscape",
        camera_make="Nikon", camera_model="Z6", iso=800,
        gps_latitude=52.01, gps_longitude=5.01, date_time_original="2024-06-16 00:00:00",
        people=[("alice", 0.95, [10, 10, 50, 50])],
    )
    insert_image(
        catalog, "/photos/c_sunset.jpg",
        keywords=["sunset"], has_nudity=0,
        short_description="Orange sky", camera_make="canon", iso=400,
        gps_latitude=52.08, gps_longitude=5.14,
        people=[("alice", 0.40, [0, 0, 20, 20]), ("bob", 0.85, [30, 30, 60, 60])],
        objects=[("dog", 0.92, [1, 1, 5, 5]), ("dog", 0.30, [6, 6, 9, 9]), ("ball", 0.75, [2, 2, 3, 3])],
    )
    insert_image(
        catalog, "/photos/d_cat.jpg",
        keywords=["cat", "50%_off"], has_nudity=0,
        long_description="A cat sleeping near the beach house",
        objects=[("cat", 0.88, [4, 4, 40, 40])],
    )
    insert_image(
        catalog, "/photos/e_dog.jpg",
        keywords=["dog", "50abc"],
        objects=[("dog", 0.6, [4, 4, 40, 40])],
    )
    insert_image(catalog, "/photos/beach_walk.jpg", keywords=["walk"])
    return catalog
