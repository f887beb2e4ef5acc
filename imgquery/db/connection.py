"""Catalog connection management — read-only SQLite with math helpers."""
from __future__ import annotations

import math
import sqlite3
from pathlib import Path
from typing import Any, Callable

from imgquery.errors import CatalogError


def _null_safe(fn: Callable[[float], float]) -> Callable[[Any], float | None]:
    def wrapper(value: Any) -> float | None:
        if value is None:
            return None
        return fn(float(value))
    return wrapper


def _clamped_asin(x: float) -> float:
    # Rounding can push the haversine term a hair past 1.0
    return math.asin(min(1.0, max(-1.0, x)))


def _clamped_sqrt(x: float) -> float:
    return math.sqrt(max(0.0, x))


# Not every SQLite build ships SQLITE_ENABLE_MATH_FUNCTIONS, so the functions
# the distance formula needs are always registered from Python.
_MATH_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "radians": math.radians,
    "sin": math.sin,
    "cos": math.cos,
    "asin": _clamped_asin,
    "sqrt": _clamped_sqrt,
}


def register_math_functions(conn: sqlite3.Connection) -> None:
    """Register NULL-safe ``radians/sin/cos/asin/sqrt`` on *conn*."""
    for name, fn in _MATH_FUNCTIONS.items():
        conn.create_function(name, 1, _null_safe(fn), deterministic=True)


def open_catalog(path: Path, read_only: bool = True) -> sqlite3.Connection:
    """Open the image catalog at *path*.

    The catalog is never written by imgquery, so the default is a
    ``mode=ro`` URI connection.  A missing file raises ``CatalogError``
    instead of silently creating an empty database.
    """
    db_path = Path(path).expanduser()
    if not db_path.is_file():
        raise CatalogError(f"Image catalog not found: {db_path}")

    if read_only:
        conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True, timeout=30)
    else:
        conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout=5000")
    register_math_functions(conn)
    return conn
