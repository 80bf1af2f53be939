"""
Shared pytest fixtures for sandpass tests.

Provides an in-memory record store so tests never touch the network.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from sandpass.config import SandpassConfig
from sandpass.errors import StoreUnavailable
from sandpass.protocol import Filter, Order, Routing
from sandpass.types import Page, Record


BASE_TIME = datetime(2025, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


def ts(minutes: float = 0, seconds: float = 0) -> datetime:
    """Time offset from BASE_TIME (10:00:00 UTC)."""
    return BASE_TIME + timedelta(minutes=minutes, seconds=seconds)


def make_record(
    id: str,
    when: Optional[datetime],
    *,
    file_name: str = "",
    mime_type: str = "application/octet-stream",
    **kwargs,
) -> Record:
    return Record(
        id=id,
        time_requested=when,
        file_name=file_name or f"cam1_{id}.mp4",
        mime_type=mime_type,
        **kwargs,
    )


class FakeRecordStore:
    """
    In-memory record store implementing RecordStoreProtocol.

    Records are kept newest first. Cursors are stringified offsets.
    Failures can be injected per call type.
    """

    def __init__(self, robot_id: str = "machine-1"):
        self.robot_id = robot_id
        self._entries: list[tuple[Record, str, bytes]] = []  # (record, robot_id, payload)
        self.rows: list[dict[str, Any]] = []
        self.query_calls: list[dict[str, Any]] = []
        self.payload_calls: list[list[str]] = []
        self.writes: list[tuple[bytes, Routing]] = []
        # Raise StoreUnavailable on these (1-based) query call numbers
        self.fail_queries: set[int] = set()
        # Raise StoreUnavailable when fetching payloads for these ids
        self.fail_payload_ids: set[str] = set()
        self.fail_writes = False
        self.fail_tabular = False
        self._next_id = 0
        self.closed = False

    # -- Test setup helpers --

    def add(self, record: Record, payload: bytes = b"", robot_id: Optional[str] = None) -> Record:
        self._entries.append((record, robot_id or self.robot_id, payload))
        self._entries.sort(
            key=lambda e: e[0].time_requested or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return record

    def add_many(self, records: list[Record]) -> None:
        for r in records:
            self.add(r)

    @property
    def records(self) -> list[Record]:
        return [e[0] for e in self._entries]

    # -- RecordStoreProtocol --

    def _matches(self, record: Record, robot_id: str, filter: Filter) -> bool:
        if filter.robot_id and filter.robot_id != robot_id:
            return False
        if filter.component_name and filter.component_name != record.component_name:
            return False
        if filter.component_type and filter.component_type != record.component_type:
            return False
        if filter.mime_types and record.mime_type not in filter.mime_types:
            return False
        if filter.tags and not set(filter.tags) <= set(record.tags):
            return False
        return True

    async def query_by_filter(
        self,
        filter: Filter,
        limit: int,
        order: Order = Order.DESCENDING,
        cursor: Optional[str] = None,
    ) -> Page:
        self.query_calls.append(
            {"filter": filter, "limit": limit, "order": order, "cursor": cursor}
        )
        if len(self.query_calls) in self.fail_queries:
            raise StoreUnavailable("injected query failure")
        matched = [r for r, rid, _ in self._entries if self._matches(r, rid, filter)]
        if order == Order.ASCENDING:
            matched.reverse()
        offset = int(cursor) if cursor else 0
        page = matched[offset:offset + limit]
        more = offset + limit < len(matched)
        return Page(records=page, next_cursor=str(offset + limit) if more else None)

    async def fetch_payloads(self, ids: list[str]) -> list[bytes]:
        self.payload_calls.append(list(ids))
        for i in ids:
            if i in self.fail_payload_ids:
                raise StoreUnavailable(f"injected payload failure for {i}")
        payloads = {r.id: p for r, _, p in self._entries}
        return [payloads.get(i, b"") for i in ids]

    async def write_record(self, payload: bytes, routing: Routing) -> str:
        if self.fail_writes:
            raise StoreUnavailable("injected write failure")
        self.writes.append((payload, routing))
        self._next_id += 1
        record_id = f"written-{self._next_id}"
        self.add(Record(
            id=record_id,
            time_requested=routing.time_range[0],
            file_name=f"{record_id}{routing.file_extension}",
            mime_type="application/json",
            component_type=routing.category,
            component_name=routing.sub_category,
            method_name=routing.operation_tag,
            part_id=routing.sink_id,
            tags=tuple(routing.tags),
        ), payload)
        return record_id

    async def tabular_by_query(self, org_id: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.fail_tabular:
            raise StoreUnavailable("injected tabular failure")
        self.last_pipeline = pipeline
        return list(self.rows)

    async def aclose(self) -> None:
        self.closed = True


def summary_row(
    pass_id: str,
    start: datetime,
    end: datetime,
    steps: Optional[list[tuple[str, datetime, datetime]]] = None,
    *,
    success: Optional[bool] = True,
    err_string: Optional[str] = None,
    part_id: str = "part-1",
) -> dict[str, Any]:
    readings: dict[str, Any] = {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "pass_id": pass_id,
        "steps": [
            {"name": name, "start": s.isoformat(), "end": e.isoformat()}
            for name, s, e in (steps or [])
        ],
    }
    if success is not None:
        readings["success"] = success
    if err_string is not None:
        readings["err_string"] = err_string
    return {"part_id": part_id, "data": {"readings": readings}}


@pytest.fixture
def store():
    """Fresh in-memory record store."""
    return FakeRecordStore()


@pytest.fixture
def config(tmp_path):
    """Config for machine-1 in a temp directory."""
    cfg = SandpassConfig(path=tmp_path)
    cfg.remote.machine_id = "machine-1"
    cfg.remote.org_id = "org-1"
    cfg.remote.location_id = "loc-1"
    cfg.remote.api_key_id = "key-id"
    cfg.remote.api_key = "secret"
    return cfg


@pytest.fixture(autouse=True)
def _detach_ops_log():
    """Sessions left open by a test must not keep writing to its temp dir."""
    sandpass_logger = logging.getLogger("sandpass")
    before = list(sandpass_logger.handlers)
    yield
    for handler in list(sandpass_logger.handlers):
        if handler not in before:
            sandpass_logger.removeHandler(handler)
            handler.close()
