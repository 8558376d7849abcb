"""
Remote document store: the protocol the sync layer consumes, and an
HTTP client for a JSON document API.

Layout on the server, per user:

    /users/{user_id}/entries/{id}
    /users/{user_id}/summaries/{id}          - weekly summaries
    /users/{user_id}/entrySummaries/{id}     - per-entry AI insight
    /users/{user_id}/entryHoldStatus/{id}    - failed generation tracking

Entry summaries and hold statuses are also addressable by entry id
through the ``entryId`` query parameter.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import quote, urlparse

import httpx

from .errors import RemoteStoreError
from .types import EntryHoldStatus, EntrySummary, JournalEntry, WeeklySummary

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@runtime_checkable
class RemoteDocumentStore(Protocol):
    """
    CRUD over a single user's journal documents.

    Every method may raise; the sync layer treats any exception as the
    store being unavailable.
    """

    async def get_entries(self) -> list[JournalEntry]: ...

    async def create_entry(self, entry: JournalEntry) -> JournalEntry:
        """Persist a new entry. Returns it with the server-assigned id."""
        ...

    async def update_entry(self, entry: JournalEntry) -> None: ...

    async def delete_entry(self, entry_id: str) -> None: ...

    async def get_summaries(self) -> list[WeeklySummary]: ...

    async def create_summary(self, summary: WeeklySummary) -> WeeklySummary: ...

    async def get_entry_summaries(self) -> list[EntrySummary]: ...

    async def create_entry_summary(self, summary: EntrySummary) -> EntrySummary: ...

    async def delete_entry_summary(self, entry_id: str) -> None:
        """Delete every summary belonging to the entry."""
        ...

    async def get_hold_statuses(self) -> list[EntryHoldStatus]: ...

    async def put_hold_status(self, hold: EntryHoldStatus) -> None:
        """Create the entry's hold status, or overwrite the existing one."""
        ...

    async def remove_hold_status(self, entry_id: str) -> None: ...


class HttpRemoteStore:
    """RemoteDocumentStore over a JSON REST API using httpx."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        user_id: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._user_id = user_id

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Remote store URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        self._client = httpx.AsyncClient(
            base_url=f"{self._api_url}/users/{quote(user_id, safe='')}",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        allow_missing: bool = False,
    ) -> Any:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e
        if allow_missing and resp.status_code == 404:
            return None
        if resp.is_error:
            raise RemoteStoreError(
                f"{method} {path} failed: HTTP {resp.status_code} {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON") from e

    async def _list(self, path: str) -> list[dict]:
        data = await self._request("GET", path)
        if isinstance(data, dict):
            data = data.get("items", [])
        return [d for d in data or [] if isinstance(d, dict)]

    # -- entries --------------------------------------------------------------

    async def get_entries(self) -> list[JournalEntry]:
        return [JournalEntry.from_dict(d) for d in await self._list("/entries")]

    async def create_entry(self, entry: JournalEntry) -> JournalEntry:
        data = await self._request("POST", "/entries", json=entry.to_dict())
        if isinstance(data, dict) and data.get("id"):
            entry.id = str(data["id"])
        return entry

    async def update_entry(self, entry: JournalEntry) -> None:
        await self._request("PUT", f"/entries/{quote(entry.id, safe='')}", json=entry.to_dict())

    async def delete_entry(self, entry_id: str) -> None:
        await self._request("DELETE", f"/entries/{quote(entry_id, safe='')}", allow_missing=True)

    # -- weekly summaries -----------------------------------------------------

    async def get_summaries(self) -> list[WeeklySummary]:
        return [WeeklySummary.from_dict(d) for d in await self._list("/summaries")]

    async def create_summary(self, summary: WeeklySummary) -> WeeklySummary:
        data = await self._request("POST", "/summaries", json=summary.to_dict())
        if isinstance(data, dict) and data.get("id"):
            summary.id = str(data["id"])
        return summary

    # -- entry summaries ------------------------------------------------------

    async def get_entry_summaries(self) -> list[EntrySummary]:
        return [EntrySummary.from_dict(d) for d in await self._list("/entrySummaries")]

    async def create_entry_summary(self, summary: EntrySummary) -> EntrySummary:
        data = await self._request("POST", "/entrySummaries", json=summary.to_dict())
        if isinstance(data, dict) and data.get("id"):
            summary.id = str(data["id"])
        return summary

    async def delete_entry_summary(self, entry_id: str) -> None:
        await self._request(
            "DELETE", "/entrySummaries", params={"entryId": entry_id}, allow_missing=True,
        )

    # -- hold statuses --------------------------------------------------------

    async def get_hold_statuses(self) -> list[EntryHoldStatus]:
        return [EntryHoldStatus.from_dict(d) for d in await self._list("/entryHoldStatus")]

    async def put_hold_status(self, hold: EntryHoldStatus) -> None:
        await self._request(
            "PUT", "/entryHoldStatus", params={"entryId": hold.entry_id}, json=hold.to_dict(),
        )

    async def remove_hold_status(self, entry_id: str) -> None:
        await self._request(
            "DELETE", "/entryHoldStatus", params={"entryId": entry_id}, allow_missing=True,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
