"""
Data types for sanding pass synchronization.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


# File suffix the capture pipeline writes for video segments
VIDEO_SUFFIX = ".mp4"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime.

    All timestamps in sandpass are aware UTC datetimes in memory and
    ISO-8601 strings on the wire.
    """
    return datetime.now(timezone.utc)


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a wire timestamp string to a timezone-aware UTC datetime.

    Handles the canonical format ('...Z'), explicit offsets, and naive
    strings (assumed UTC).
    """
    if not isinstance(ts, str) or not ts:
        raise ValueError(f"Invalid timestamp: {ts!r}")
    ts = ts.strip()
    if ts.endswith("Z") or ts.endswith("z"):
        ts = ts[:-1] + "+00:00"
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_timestamp(dt: datetime) -> str:
    """Format a datetime as ISO-8601 UTC, e.g. 2025-01-02T03:04:05.678Z.

    Milliseconds are the canonical precision; microseconds are kept only
    when present so that parsing the result gives back the same instant.
    """
    dt = as_utc(dt)
    if dt.microsecond % 1000:
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _coerce_time(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return parse_utc_timestamp(value)


@dataclass(frozen=True)
class Record:
    """
    Metadata for one binary record in the remote store.

    Records are immutable and append-only. The payload is not held here;
    it is resolved lazily by id through the store client.
    """
    id: str
    time_requested: Optional[datetime]
    file_name: str = ""
    mime_type: str = ""
    uri: str = ""
    component_type: str = ""
    component_name: str = ""
    method_name: str = ""
    part_id: str = ""
    tags: tuple[str, ...] = ()

    def __post_init__(self):
        if self.time_requested is not None:
            object.__setattr__(self, "time_requested", as_utc(self.time_requested))

    @property
    def is_video(self) -> bool:
        """True for records holding a captured video segment."""
        return (
            self.file_name.lower().endswith(VIDEO_SUFFIX)
            or self.mime_type.startswith("video/")
        )

    @classmethod
    def from_metadata(cls, meta: dict[str, Any]) -> "Record":
        """Build a Record from one metadata object returned by the store.

        Raises:
            ValueError: If the record id is missing or a timestamp is malformed
        """
        capture = meta.get("capture_metadata") or {}
        record_id = meta.get("binary_data_id") or meta.get("id")
        if not record_id:
            raise ValueError("Record metadata has no binary_data_id")
        return cls(
            id=str(record_id),
            time_requested=_coerce_time(meta.get("time_requested")),
            file_name=meta.get("file_name") or "",
            mime_type=capture.get("mime_type") or meta.get("mime_type") or "",
            uri=meta.get("uri") or "",
            component_type=capture.get("component_type", ""),
            component_name=capture.get("component_name", ""),
            method_name=capture.get("method_name", ""),
            part_id=capture.get("part_id", ""),
            tags=tuple(capture.get("tags") or ()),
        )


@dataclass(frozen=True)
class Step:
    """One timed sub-phase of a pass. Holds a non-owning back-reference by pass_id."""
    name: str
    start: datetime
    end: datetime
    pass_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start > self.end:
            raise ValueError(
                f"Step {self.name!r} ends before it starts ({self.start} > {self.end})"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class RunPass:
    """
    One sanding pass, as summarized by the robot.

    Steps are assumed to fall within [start, end]; this is not enforced.
    """
    pass_id: str
    start: datetime
    end: datetime
    success: bool = True
    err_string: Optional[str] = None
    steps: tuple[Step, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start > self.end:
            raise ValueError(
                f"Pass {self.pass_id!r} ends before it starts ({self.start} > {self.end})"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class Note:
    """
    A free-text note attached to a pass.

    Every save creates a new immutable Note; the newest by created_at is
    the effective value for its pass_id.
    """
    pass_id: str
    note_text: str
    created_at: datetime
    created_by: str

    def __post_init__(self):
        object.__setattr__(self, "created_at", as_utc(self.created_at))


@dataclass
class Page:
    """One page of a filtered query, newest first."""
    records: list[Record] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def oldest(self) -> Optional[Record]:
        """Last record in the page; the oldest under descending order."""
        return self.records[-1] if self.records else None
