"""imgquery — multi-facet search over a pre-indexed image metadata catalog."""
from __future__ import annotations

__version__ = "0.1.0"
