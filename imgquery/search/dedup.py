"""Per-invocation path deduplication."""
from __future__ import annotations

from typing import Iterable, Iterator

from imgquery.models import ImageRecord

DATA_URI_PREFIX = "data:"


class SeenPaths:
    """Image paths already emitted in one logical invocation.

    Reusing one instance across repeated or appended searches guarantees a
    path is emitted at most once overall.  Embedded records are tracked by
    their ``data:`` URI as well as by their catalog path.
    """

    def __init__(self, paths: Iterable[str] = ()) -> None:
        self._paths: set[str] = set(paths)

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    @property
    def has_embedded(self) -> bool:
        """Whether any seen path is an embedded ``data:`` URI."""
        return any(p.startswith(DATA_URI_PREFIX) for p in self._paths)

    def admit(self, path: str) -> bool:
        """Record *path*; False if it was already emitted."""
        if path in self._paths:
            return False
        self._paths.add(path)
        return True

    def seed(self, records: Iterable[ImageRecord]) -> None:
        for record in records:
            self._paths.add(record.path)

    def unique(self, records: Iterable[ImageRecord]) -> Iterator[ImageRecord]:
        """Yield only records whose path has not been seen yet."""
        for record in records:
            if self.admit(record.path):
                yield record
