"""
Delta poller: merges newly arrived records into the loaded record set.

Each poll re-requests the newest page and keeps only ids not seen before.
No cursor is carried between polls, so more than `limit` arrivals between
two polls leaves a gap. That's acceptable for live status, not for audit.

Polls are single-flight: a poll requested while another is outstanding is
skipped rather than racing on the same record set.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Optional

from .errors import StoreUnavailable
from .protocol import Filter, Order, RecordStoreProtocol
from .record_set import LoadedRecordSet
from .types import Record

logger = logging.getLogger(__name__)

DEFAULT_POLL_LIMIT = 100


class DeltaPoller:
    """Fetches the newest records and merges the unseen ones."""

    def __init__(
        self,
        client: RecordStoreProtocol,
        record_set: LoadedRecordSet,
        filter: Filter,
        *,
        limit: int = DEFAULT_POLL_LIMIT,
    ):
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self._client = client
        self._record_set = record_set
        self._filter = filter
        self._limit = limit
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def poll(self) -> list[Record]:
        """
        Run one poll.

        Returns:
            Records newly merged into the set, newest first. Empty when
            nothing is new or another poll is already outstanding.

        Raises:
            StoreUnavailable: If the query fails. Nothing is merged.
        """
        if self._in_flight:
            logger.debug("Poll skipped: previous poll still outstanding")
            return []
        self._in_flight = True
        try:
            page = await self._client.query_by_filter(
                self._filter, self._limit, Order.DESCENDING, None,
            )
        finally:
            self._in_flight = False

        known = self._record_set.ids()
        fresh = [r for r in page.records if r.id not in known]
        if not fresh:
            return []
        added = self._record_set.merge(fresh)
        logger.info("Found %d new records during polling", len(added))
        return added

    async def run(
        self,
        interval: float,
        *,
        stop: Optional[asyncio.Event] = None,
        on_new: Optional[Callable[[list[Record]], None]] = None,
        on_error: Optional[Callable[[StoreUnavailable], None]] = None,
    ) -> None:
        """
        Poll every `interval` seconds until `stop` is set.

        A failed poll is logged and reported to on_error; the loop carries
        on at the next tick.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                added = await self.poll()
            except StoreUnavailable as e:
                logger.warning("Poll failed: %s", e)
                if on_error is not None:
                    on_error(e)
            else:
                if added and on_new is not None:
                    on_new(added)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
