"""Search engine — compile criteria, execute, map, threshold and deduplicate.

Two execution modes share one pipeline:

* ``iter_records`` streams: each row is mapped and yielded as the cursor
  produces it, for callers that only forward results.
* ``find`` materializes every record first and reports the elapsed time,
  for callers that need the total before producing output.
"""
from __future__ import annotations

import dataclasses
import logging
import sqlite3
import time
from typing import Any, Iterable, Iterator

from imgquery.db.connection import register_math_functions
from imgquery.models import ImageRecord
from imgquery.search.compiler import CompiledQuery, compile_criteria
from imgquery.search.confidence import apply_min_confidence, should_keep
from imgquery.search.criteria import SearchCriteria
from imgquery.search.dedup import SeenPaths
from imgquery.search.mapper import embed_image, map_row, replace_path

log = logging.getLogger(__name__)


@dataclasses.dataclass
class SearchResult:
    """Materialized search output."""

    records: list[ImageRecord]
    elapsed: float
    criteria: SearchCriteria

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(self.records)

    @property
    def paths(self) -> list[str]:
        return [r.path for r in self.records]


class SearchEngine:
    """Multi-facet search over an image catalog connection.

    *conn* is a ``sqlite3.Connection`` or any object whose
    ``execute(sql, params)`` returns rows with named column access.
    """

    def __init__(self, conn: Any, embed_images: bool = False) -> None:
        self.conn = conn
        self.embed_images = embed_images
        if isinstance(conn, sqlite3.Connection):
            register_math_functions(conn)

    def compile(self, criteria: SearchCriteria) -> CompiledQuery:
        return compile_criteria(criteria)

    def _execute(self, compiled: CompiledQuery) -> Iterable[Any]:
        if isinstance(self.conn, sqlite3.Connection):
            cur = self.conn.cursor()
            cur.row_factory = sqlite3.Row
            return cur.execute(compiled.sql, compiled.params)
        return self.conn.execute(compiled.sql, compiled.params)

    def iter_records(
        self,
        criteria: SearchCriteria,
        seen: SeenPaths | None = None,
        carry_over: Iterable[ImageRecord] = (),
    ) -> Iterator[ImageRecord]:
        """Stream matching records in path order.

        *carry_over* records (append mode) are emitted first and their paths
        are seeded into *seen* before the query runs.  Pass the same *seen*
        to several calls to deduplicate across them.
        """
        if seen is None:
            seen = SeenPaths()

        compiled = self.compile(criteria)

        yield from seen.unique(carry_over)

        threshold = criteria.min_confidence_ratio
        for row in self._execute(compiled):
            record = map_row(row)
            if record.path in seen:
                continue
            apply_min_confidence(record, threshold)
            if not should_keep(record, criteria):
                log.debug("Dropped %s: no detection above %.2f", record.path, threshold)
                continue

            # Carried-over records from an embedding run hold data: URIs,
            # so the embedded form is checked as well.
            embedded = None
            if self.embed_images or seen.has_embedded:
                embedded = embed_image(record.path)
                if embedded in seen:
                    continue
                seen.admit(embedded)
            seen.admit(record.path)

            if self.embed_images:
                record = replace_path(record, embedded)
            yield record

    def find(
        self,
        criteria: SearchCriteria,
        seen: SeenPaths | None = None,
        carry_over: Iterable[ImageRecord] = (),
    ) -> SearchResult:
        """Materialize all matching records.

        A query failure propagates; no partial result is returned.
        """
        start = time.perf_counter()
        records = list(self.iter_records(criteria, seen=seen, carry_over=carry_over))
        elapsed = time.perf_counter() - start
        log.info("%d result(s) in %.3fs for %s", len(records), elapsed, criteria.describe())
        return SearchResult(records=records, elapsed=elapsed, criteria=criteria)
