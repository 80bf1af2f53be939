"""
HTTP client for the remote record store.

Implements RecordStoreProtocol over httpx.AsyncClient: filtered, paginated
queries of binary record metadata, payload retrieval by id, note uploads,
and the tabular query pipeline used to read pass summaries.

Every failure (transport, timeout, non-2xx, malformed body) surfaces as
StoreUnavailable. There is no retry here; retry policy belongs to the caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .errors import StoreUnavailable
from .protocol import Filter, Order, Routing
from .types import Page, Record

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class RecordStoreClient:
    """Async HTTP client for the record store."""

    def __init__(
        self,
        api_url: str,
        api_key_id: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url.rstrip("/")

        # Refuse non-HTTPS for remote APIs (the key would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in _LOCAL_HOSTS:
                raise ValueError(
                    f"Record store URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers = {
            "key_id": api_key_id,
            "key": api_key,
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise StoreUnavailable(
                f"{path} failed: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreUnavailable(f"{path} failed: {e}") from e
        except ValueError as e:
            raise StoreUnavailable(f"{path} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreUnavailable(f"{path} returned {type(data).__name__}, expected object")
        return data

    async def query_by_filter(
        self,
        filter: Filter,
        limit: int,
        order: Order = Order.DESCENDING,
        cursor: Optional[str] = None,
    ) -> Page:
        """POST /v1/binary/query -> one page of record metadata."""
        body: dict[str, Any] = {
            "filter": filter.to_dict(),
            "limit": limit,
            "sort_order": order.value,
            "include_binary": False,
        }
        if cursor:
            body["last"] = cursor
        data = await self._post("/v1/binary/query", body)
        try:
            records = [Record.from_metadata(m) for m in data.get("data", [])]
        except (ValueError, TypeError, AttributeError) as e:
            raise StoreUnavailable(f"Malformed record metadata: {e}") from e
        logger.debug("Query returned %d records (cursor=%s)", len(records), bool(data.get("last")))
        return Page(records=records, next_cursor=data.get("last") or None)

    async def fetch_payloads(self, ids: list[str]) -> list[bytes]:
        """POST /v1/binary/by-ids -> payloads in the requested id order.

        Ids the store doesn't return resolve to empty bytes.
        """
        if not ids:
            return []
        data = await self._post("/v1/binary/by-ids", {"binary_ids": list(ids)})
        by_id: dict[str, bytes] = {}
        try:
            for item in data.get("data", []):
                meta = item.get("metadata") or {}
                item_id = meta.get("binary_data_id") or item.get("id")
                if not item_id:
                    logger.warning("Skipping payload item without an id")
                    continue
                by_id[str(item_id)] =base64.b64decode(item.get("binary") or "")
        except (binascii.Error, AttributeError, TypeError) as e:
            raise StoreUnavailable(f"Malformed payload response: {e}") from e
        return [by_id.get(i, b"") for i in ids]

    async def write_record(self, payload: bytes, routing: Routing) -> str:
        """POST /v1/binary/upload -> id of the new record."""
        body = routing.to_dict()
        body["binary"] = base64.b64encode(payload).decode("ascii")
        data = await self._post("/v1/binary/upload", body)
        return str(data.get("binary_data_id") or data.get("file_id") or "")

    async def tabular_by_query(
        self,
        org_id: str,
        pipeline: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """POST /v1/tabular/query -> rows matched by the pipeline."""
        data = await self._post(
            "/v1/tabular/query",
            {"organization_id": org_id, "mql_stages": pipeline},
        )
        rows = data.get("data", [])
        if not isinstance(rows, list):
            raise StoreUnavailable("Tabular query returned non-list data")
        return rows

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RecordStoreClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
