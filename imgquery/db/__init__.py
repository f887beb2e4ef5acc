"""Catalog access for imgquery — read-only SQLite connection and schema contract."""
from __future__ import annotations

from imgquery.db.connection import open_catalog, register_math_functions

__all__ = ["open_catalog", "register_math_functions"]
