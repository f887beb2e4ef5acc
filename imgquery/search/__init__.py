"""Search layer: criteria → SQL → records."""
from __future__ import annotations

from imgquery.search.compiler import CompiledQuery, compile_criteria
from imgquery.search.criteria import SearchCriteria
from imgquery.search.dedup import SeenPaths
from imgquery.search.engine import SearchEngine, SearchResult

__all__ = [
    "CompiledQuery",
    "SearchCriteria",
    "SearchEngine",
    "SearchResult",
    "SeenPaths",
    "compile_criteria",
]
