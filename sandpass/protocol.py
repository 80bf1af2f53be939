"""
Protocol definitions for the remote record store.

The record store is an external collaborator: filtered, paginated,
time-ordered retrieval of binary record metadata, payload retrieval by
id, append-only writes, and a tabular query pipeline.

Implemented by:
- RecordStoreClient (HTTP, see store_client.py)
- FakeRecordStore (in-memory, tests)
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from .types import Page, format_utc_timestamp


class Order(str, enum.Enum):
    """Ordering of a filtered query by capture time."""
    DESCENDING = "descending"
    ASCENDING = "ascending"


@dataclass(frozen=True)
class Filter:
    """Which records a query should match. Empty fields don't constrain."""
    robot_id: str = ""
    component_name: str = ""
    component_type: str = ""
    mime_types: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.robot_id:
            d["robot_id"] = self.robot_id
        if self.component_name:
            d["component_name"] = self.component_name
        if self.component_type:
            d["component_type"] = self.component_type
        if self.mime_types:
            d["mime_type"] = list(self.mime_types)
        if self.tags:
            d["tags_filter"] = {"tags": list(self.tags)}
        return d


@dataclass(frozen=True)
class Routing:
    """Where and how a written record is filed by the store."""
    sink_id: str
    category: str
    sub_category: str
    operation_tag: str
    file_extension: str
    time_range: tuple[datetime, datetime]
    tags: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "part_id": self.sink_id,
            "component_type": self.category,
            "component_name": self.sub_category,
            "method_name": self.operation_tag,
            "file_extension": self.file_extension,
            "data_request_times": [format_utc_timestamp(t) for t in self.time_range],
            "tags": list(self.tags),
        }


@runtime_checkable
class RecordStoreProtocol(Protocol):
    """
    Async client contract for the remote record store.

    All methods suspend the caller. Implementations raise
    StoreUnavailable for any transport or query failure.
    """

    async def query_by_filter(
        self,
        filter: Filter,
        limit: int,
        order: Order = Order.DESCENDING,
        cursor: Optional[str] = None,
    ) -> Page: ...

    async def fetch_payloads(self, ids: list[str]) -> list[bytes]: ...

    async def write_record(self, payload: bytes, routing: Routing) -> str: ...

    async def tabular_by_query(
        self,
        org_id: str,
        pipeline: list[dict[str, Any]],
    ) -> list[dict[str, Any]]: ...
