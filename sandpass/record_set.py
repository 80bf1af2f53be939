"""
The loaded record set: the process-local view of store records.

Owns the id -> Record mapping and the most-recent-first display order.
Only two mutations exist: initialize() once from a completed backfill,
and merge() of polled records. Membership only grows.
"""

from collections.abc import Iterable, Iterator
from typing import Optional

from .types import Record


class LoadedRecordSet:
    """Append-only id -> Record mapping with a newest-first display order."""

    def __init__(self):
        self._by_id: dict[str, Record] = {}
        self._order: list[str] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, records: Iterable[Record]) -> None:
        """Populate from a completed backfill. May only be called once.

        Duplicate ids in the input collapse to their first occurrence.
        """
        if self._initialized:
            raise RuntimeError("Record set is already initialized")
        for record in records:
            if record.id in self._by_id:
                continue
            self._by_id[record.id] = record
            self._order.append(record.id)
        self._initialized = True

    def merge(self, records: Iterable[Record]) -> list[Record]:
        """
        Insert records whose ids are not yet known.

        New records are placed in front of the display order, keeping the
        order they were given in (newest first). Known ids are left alone.

        Returns:
            The records that were actually added
        """
        added: list[Record] = []
        for record in records:
            if record.id in self._by_id:
                continue
            self._by_id[record.id] = record
            added.append(record)
        if added:
            self._order[:0] = [r.id for r in added]
        return added

    def get(self, id: str) -> Optional[Record]:
        return self._by_id.get(id)

    def ids(self) -> frozenset[str]:
        return frozenset(self._by_id)

    def records(self) -> list[Record]:
        """All records in display order (newest first)."""
        return [self._by_id[i] for i in self._order]

    def videos(self) -> list[Record]:
        return [r for r in self.records() if r.is_video]

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, id: object) -> bool:
        return id in self._by_id

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records())
