"""
Pass notes stored as immutable JSON records in the record store.

A note is a small UTF-8 JSON object::

    {"pass_id": "...", "note_text": "...",
     "created_at": "2025-01-02T03:04:05.678Z", "created_by": "web-app"}

Every save appends a new record; nothing is updated in place. Editing a
note means saving a newer one for the same pass_id, and clearing it means
saving an empty note_text. Readers resolve the effective note as the one
with the latest created_at (client clock), not the latest to arrive.

Notes are filtered client-side: the store is queried by the notes sink's
routing metadata and every payload is decoded to find its pass_id. A
payload that fails to decode is logged and skipped; it never fails the
batch. Store errors do propagate.
"""

import asyncio
import json
import logging
from collections.abc import Iterable, Sequence
from typing import Optional

from .errors import DecodeFailure, InvalidArgument
from .protocol import Filter, Order, RecordStoreProtocol, Routing
from .types import Note, Record, format_utc_timestamp, parse_utc_timestamp, utc_now

logger = logging.getLogger(__name__)

# Routing metadata of the notes sink
NOTES_COMPONENT_TYPE = "rdk:component:generic"
NOTES_COMPONENT_NAME = "sanding-notes"
NOTES_METHOD_NAME = "SaveNote"
NOTES_TAG = "sanding-notes"
NOTES_FILE_EXTENSION = ".json"

DEFAULT_AUTHOR = "web-app"
DEFAULT_FETCH_LIMIT = 100
DEFAULT_FETCH_MANY_LIMIT = 500

_REQUIRED_FIELDS = ("pass_id", "note_text", "created_at", "created_by")


def encode_note(note: Note) -> bytes:
    """Serialize a note to its UTF-8 JSON wire form."""
    return json.dumps({
        "pass_id": note.pass_id,
        "note_text": note.note_text,
        "created_at": format_utc_timestamp(note.created_at),
        "created_by": note.created_by,
    }, ensure_ascii=False).encode("utf-8")


def decode_note(payload: bytes, record_id: Optional[str] = None) -> Note:
    """
    Parse a note from its wire form.

    Unknown extra fields are ignored so that newer writers stay readable.

    Raises:
        DecodeFailure: If the payload isn't a JSON object with the four
            required string fields and a valid created_at
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeFailure(f"Note payload is not UTF-8 JSON: {e}", record_id) from e
    if not isinstance(data, dict):
        raise DecodeFailure(
            f"Note payload is {type(data).__name__}, expected object", record_id
        )
    for key in _REQUIRED_FIELDS:
        if not isinstance(data.get(key), str):
            raise DecodeFailure(f"Note field {key!r} missing or not a string", record_id)
    try:
        created_at = parse_utc_timestamp(data["created_at"])
    except ValueError as e:
        raise DecodeFailure(f"Invalid created_at: {data['created_at']!r}", record_id) from e
    return Note(
        pass_id=data["pass_id"],
        note_text=data["note_text"],
        created_at=created_at,
        created_by=data["created_by"],
    )


def newest_first(notes: Iterable[Note]) -> list[Note]:
    """Sort notes by created_at, newest first. Ties keep their given order."""
    return sorted(notes, key=lambda n: n.created_at, reverse=True)


def latest_note(notes: Iterable[Note]) -> Optional[Note]:
    """The effective note: latest created_at wins, regardless of arrival order."""
    latest: Optional[Note] = None
    for note in notes:
        if latest is None or note.created_at > latest.created_at:
            latest = note
    return latest


def latest_text(notes: Iterable[Note]) -> str:
    """Effective note text, or empty string when there is no note."""
    note = latest_note(notes)
    return note.note_text if note is not None else ""


class NotesStore:
    """
    Reads and writes pass notes through the record store.

    Payloads are resolved one record at a time by default. With
    concurrency > 1 up to that many are resolved at once; results are
    still reassembled in query order.
    """

    def __init__(
        self,
        client: RecordStoreProtocol,
        machine_id: str,
        *,
        author: str = DEFAULT_AUTHOR,
        concurrency: int = 1,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
        fetch_many_limit: int = DEFAULT_FETCH_MANY_LIMIT,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self._client = client
        self._machine_id = machine_id
        self._author = author
        self._concurrency = concurrency
        self._fetch_limit = fetch_limit
        self._fetch_many_limit = fetch_many_limit

    @property
    def filter(self) -> Filter:
        """Query filter selecting this machine's note records."""
        return Filter(
            robot_id=self._machine_id,
            component_name=NOTES_COMPONENT_NAME,
            component_type=NOTES_COMPONENT_TYPE,
            tags=(NOTES_TAG,),
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def save(self, pass_id: str, text: str, part_id: str) -> Note:
        """
        Save a note for a pass as a new record.

        An empty text is valid and supersedes any earlier note.

        Args:
            pass_id: Pass the note belongs to
            text: Note body
            part_id: Robot part that routes the upload

        Returns:
            The saved Note

        Raises:
            InvalidArgument: If part_id is empty
            StoreUnavailable: If the upload fails
        """
        if not part_id:
            raise InvalidArgument("No part ID available for upload")
        if not pass_id:
            raise InvalidArgument("A note needs a pass_id")

        now = utc_now()
        # Wire precision is milliseconds
        now = now.replace(microsecond=now.microsecond - now.microsecond % 1000)
        note = Note(
            pass_id=pass_id,
            note_text=text,
            created_at=now,
            created_by=self._author,
        )
        logger.info("Saving note for pass %s (%d chars)", pass_id, len(text))

        routing = Routing(
            sink_id=part_id,
            category=NOTES_COMPONENT_TYPE,
            sub_category=NOTES_COMPONENT_NAME,
            operation_tag=NOTES_METHOD_NAME,
            file_extension=NOTES_FILE_EXTENSION,
            time_range=(now, now),
            tags=(NOTES_TAG,),
        )
        record_id = await self._client.write_record(encode_note(note), routing)
        logger.debug("Note for pass %s stored as %s", pass_id, record_id)
        return note

    async def update(self, pass_id: str, text: str, part_id: str) -> Note:
        """Supersede the current note for a pass. Same as save()."""
        return await self.save(pass_id, text, part_id)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def fetch_one(self, pass_id: str) -> list[Note]:
        """
        All notes for one pass, newest first.

        Raises:
            StoreUnavailable: If the query or a payload fetch fails
        """
        notes = await self._fetch_notes(self._fetch_limit)
        matching = newest_first(n for n in notes if n.pass_id == pass_id)
        logger.debug("Retrieved %d notes for pass %s", len(matching), pass_id)
        return matching

    async def fetch_many(self, pass_ids: Sequence[str]) -> dict[str, list[Note]]:
        """
        Notes for several passes from a single query.

        Every requested pass_id is present in the result, mapped to an
        empty list when it has no notes. Each list is newest first.

        Raises:
            StoreUnavailable: If the query or a payload fetch fails
        """
        by_pass: dict[str, list[Note]] = {pid: [] for pid in pass_ids}
        if not by_pass:
            return by_pass
        for note in await self._fetch_notes(self._fetch_many_limit):
            bucket = by_pass.get(note.pass_id)
            if bucket is not None:
                bucket.append(note)
        return {pid: newest_first(notes) for pid, notes in by_pass.items()}

    async def _fetch_notes(self, limit: int) -> list[Note]:
        page = await self._client.query_by_filter(
            self.filter, limit, Order.DESCENDING, None,
        )
        payloads = await self._resolve_payloads(page.records)

        notes: list[Note] = []
        seen: set[str] = set()
        for record in page.records:
            # At-least-once delivery: the same record may be listed twice
            if record.id in seen:
                continue
            seen.add(record.id)
            payload = payloads.get(record.id)
            if not payload:
                logger.warning("No binary data found for note record %s", record.id)
                continue
            try:
                notes.append(decode_note(payload, record.id))
            except DecodeFailure as e:
                logger.warning("Failed to parse note record %s: %s", record.id, e)
        return notes

    async def _resolve_payloads(self, records: list[Record]) -> dict[str, bytes]:
        """Payload per record id. The first store error in query order propagates."""
        ids = list(dict.fromkeys(r.id for r in records))
        if self._concurrency == 1:
            payloads: dict[str, bytes] = {}
            for record_id in ids:
                payloads[record_id] = await self._fetch_payload(record_id)
            return payloads

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(record_id: str) -> bytes:
            async with semaphore:
                return await self._fetch_payload(record_id)

        results = await asyncio.gather(
            *(bounded(i) for i in ids), return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return dict(zip(ids, results))

    async def _fetch_payload(self, record_id: str) -> bytes:
        fetched = await self._client.fetch_payloads([record_id])
        return fetched[0] if fetched else b""
