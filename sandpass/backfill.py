"""
Backfill of a bounded time window from the record store.

Walks the store newest-first, one page at a time, until the page that
crosses the lower boundary has been read or the store runs out of data.
The page that crosses the boundary is kept whole, so callers get every
record at or after the boundary plus possibly a few older ones.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .protocol import Filter, Order, RecordStoreProtocol
from .types import Record, as_utc

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass
class BackfillResult:
    """Outcome of one backfill walk."""
    records: list[Record] = field(default_factory=list)
    pages: int = 0
    # True when the store ran out of data before the boundary was crossed
    reached_end: bool = False
    # True when max_pages stopped the walk before the boundary
    truncated: bool = False


class BackfillFetcher:
    """
    Cursor-paginated backward walk over the record store.

    The accumulator is local to each fetch() call; nothing is visible to
    the caller unless the whole walk succeeds.
    """

    def __init__(
        self,
        client: RecordStoreProtocol,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: Optional[int] = None,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self._client = client
        self._page_size = page_size
        self._max_pages = max_pages

    async def fetch(self, t_min: Optional[datetime], filter: Filter) -> BackfillResult:
        """
        Fetch all records captured at or after t_min.

        Args:
            t_min: Lower time boundary; None walks the whole history
            filter: Which records are relevant

        Returns:
            BackfillResult with records newest first

        Raises:
            StoreUnavailable: If any page request fails. No partial result.
        """
        if t_min is not None:
            t_min = as_utc(t_min)
        accumulated: list[Record] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            logger.debug("Backfill page %d (cursor=%s)", pages, cursor)
            page = await self._client.query_by_filter(
                filter, self._page_size, Order.DESCENDING, cursor,
            )
            pages += 1

            if not page.records:
                return BackfillResult(accumulated, pages, reached_end=True)

            accumulated.extend(page.records)

            oldest_time = page.oldest.time_requested
            if oldest_time is None:
                # Can't tell where the boundary is; treat as end of usable data
                logger.warning(
                    "Backfill stopped: record %s has no capture time", page.oldest.id
                )
                return BackfillResult(accumulated, pages, reached_end=True)
            if t_min is not None and oldest_time < t_min:
                break
            if not page.next_cursor:
                return BackfillResult(accumulated, pages, reached_end=True)
            if self._max_pages is not None and pages >= self._max_pages:
                logger.warning(
                    "Backfill stopped after %d pages before reaching %s",
                    pages, t_min,
                )
                return BackfillResult(accumulated, pages, truncated=True)
            cursor = page.next_cursor

        logger.info("Backfill fetched %d records in %d pages", len(accumulated), pages)
        return BackfillResult(accumulated, pages, reached_end=False)
