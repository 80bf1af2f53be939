"""
Dashboard session: one machine's passes, records, and notes.

Control flow:
    load()  -> read pass summaries, backfill records back to the earliest
               pass start, initialize the record set (exactly once)
    poll()  -> merge newly arrived records (single-flight)
    step_videos() -> correlate a pass's steps with loaded videos

The notes store works independently against the same client, keyed by
pass_id rather than by time window.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Optional

from .backfill import BackfillFetcher, BackfillResult
from .config import SandpassConfig
from .correlate import StepVideos, correlate_pass
from .errors import InvalidArgument, StoreUnavailable
from .logging_config import configure_ops_log
from .notes import NotesStore
from .passes import earliest_start, load_passes
from .poller import DeltaPoller
from .protocol import Filter, RecordStoreProtocol
from .record_set import LoadedRecordSet
from .types import Record, RunPass

logger = logging.getLogger(__name__)

# Video segments are uploaded without a specific MIME type
VIDEO_MIME_TYPE = "application/octet-stream"


class DashboardSession:
    """Owns the loaded record set and wires the sync components together."""

    def __init__(self, client: RecordStoreProtocol, config: SandpassConfig):
        self._client = client
        self._config = config
        remote = config.remote
        if not remote.machine_id:
            raise InvalidArgument("machine_id is required (set SANDPASS_MACHINE_ID)")

        self._ops_log_handler = configure_ops_log(config.path)

        self.records = LoadedRecordSet()
        self.passes: list[RunPass] = []
        self.part_id: str = remote.part_id
        self.last_backfill: Optional[BackfillResult] = None

        self._backfill = BackfillFetcher(
            client,
            page_size=config.sync.page_size,
            max_pages=config.sync.max_pages,
        )
        self._poller = DeltaPoller(
            client,
            self.records,
            Filter(robot_id=remote.machine_id, mime_types=(VIDEO_MIME_TYPE,)),
            limit=config.sync.poll_limit,
        )
        self.notes = NotesStore(
            client,
            remote.machine_id,
            author=config.notes.author,
            concurrency=config.notes.concurrency,
            fetch_limit=config.notes.fetch_limit,
            fetch_many_limit=config.notes.fetch_many_limit,
        )

    @property
    def loaded(self) -> bool:
        return self.records.initialized

    async def load(self) -> BackfillResult:
        """
        Load passes and backfill the record window.

        Raises:
            StoreUnavailable: If any store call fails. The record set is
                left uninitialized in that case.
            RuntimeError: If the session was already loaded
        """
        if self.records.initialized:
            raise RuntimeError("Session is already loaded")
        passes = await self.load_passes()

        t_min = earliest_start(passes)
        result = await self._backfill.fetch(
            t_min, Filter(robot_id=self._config.remote.machine_id),
        )
        self.records.initialize(result.records)
        self.last_backfill = result
        logger.info(
            "Session loaded: %d passes, %d records (%d pages)",
            len(passes), len(self.records), result.pages,
        )
        return result

    async def load_passes(self) -> list[RunPass]:
        """Read pass summaries; picks up the routing part id if none is configured."""
        remote = self._config.remote
        passes, part_id = await load_passes(
            self._client, remote.org_id, remote.location_id, remote.machine_id,
        )
        self.passes = passes
        if not self.part_id:
            self.part_id = part_id
        return passes

    async def poll(self) -> list[Record]:
        """Merge newly arrived records. See DeltaPoller.poll()."""
        if not self.records.initialized:
            raise RuntimeError("Session must be loaded before polling")
        return await self._poller.poll()

    async def watch(
        self,
        interval: Optional[float] = None,
        *,
        stop: Optional[asyncio.Event] = None,
        on_new: Optional[Callable[[list[Record]], None]] = None,
        on_error: Optional[Callable[[StoreUnavailable], None]] = None,
    ) -> None:
        """Poll on a timer until stop is set."""
        if not self.records.initialized:
            raise RuntimeError("Session must be loaded before watching")
        await self._poller.run(
            interval or self._config.sync.poll_interval,
            stop=stop, on_new=on_new, on_error=on_error,
        )

    def get_pass(self, pass_id: str) -> Optional[RunPass]:
        for p in self.passes:
            if p.pass_id == pass_id:
                return p
        return None

    def step_videos(self, pass_id: str) -> list[StepVideos]:
        """
        Videos per step of one pass.

        Raises:
            KeyError: If the pass isn't loaded
        """
        run_pass = self.get_pass(pass_id)
        if run_pass is None:
            raise KeyError(pass_id)
        return correlate_pass(run_pass, self.records.records())

    async def save_note(self, pass_id: str, text: str):
        """Save a note routed to this session's part."""
        return await self.notes.save(pass_id, text, self.part_id)

    async def aclose(self) -> None:
        if self._ops_log_handler is not None:
            logging.getLogger("sandpass").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()
