"""HTTP client for the photo backend that stores entries and picks winners."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from .config import BackendConfig
from .models import Entry

log = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when the backend is unreachable or answers with an unusable response."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class DrawError(BackendError):
    """Raised when the backend completed the draw request without producing a winner."""


class BackendClient:
    """Thin aiohttp wrapper around the entry feed, draw trigger and current winner endpoints."""

    def __init__(
        self, config: BackendConfig, *, session: Optional[aiohttp.ClientSession] = None
    ) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str) -> Any:
        url = f"{self.config.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, headers=self._headers()) as response:
                if response.status >= 400:
                    body = await response.text(errors="replace")
                    raise BackendError(
                        f"{method} {path} responded with status {response.status}: {body[:200]}",
                        status=response.status,
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as exc:
                    raise BackendError(
                        f"{method} {path} returned a non-JSON body", status=response.status
                    ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BackendError(f"{method} {path} failed: {exc}") from exc

    async def fetch_entries(self) -> list[Entry]:
        data = await self._request("GET", self.config.entries_path)
        if isinstance(data, dict):
            if data.get("success") is False:
                raise BackendError(str(data.get("message") or "Entry feed reported failure"))
            items = data.get("photos")
            if items is None:
                items = data.get("entries", [])
        else:
            items = data
        if not isinstance(items, list):
            raise BackendError("Entry feed did not contain a list of entries")

        entries: list[Entry] = []
        for item in items:
            if not isinstance(item, dict):
                log.warning("Skipping malformed entry payload %r", item)
                continue
            try:
                entries.append(Entry.from_backend(item))
            except (TypeError, ValueError, OverflowError) as exc:
                log.warning("Skipping entry: %s", exc)
        log.debug("Fetched %d entries from %s", len(entries), self.config.entries_path)
        return entries

    async def trigger_draw(self) -> Entry:
        data = await self._request("POST", self.config.draw_path)
        if not isinstance(data, dict):
            raise DrawError("Draw response was not an object")
        if data.get("success") is False:
            raise DrawError(str(data.get("message") or "Automated lottery failed"))
        winner = data.get("winner") if "winner" in data else data
        if not isinstance(winner, dict) or not (winner.get("winnerId") or winner.get("id")):
            raise DrawError(str(data.get("message") or "Automated lottery failed"))
        try:
            return Entry.from_backend(winner, winner=True)
        except ValueError as exc:
            raise DrawError(str(exc)) from exc

    async def fetch_current_winner(self) -> Optional[Entry]:
        data = await self._request("GET", self.config.winner_path)
        if not isinstance(data, dict):
            return None
        winner = data.get("winner")
        if not isinstance(winner, dict):
            return None
        try:
            return Entry.from_backend(winner, winner=True)
        except (TypeError, ValueError, OverflowError):
            log.warning("Ignoring malformed current winner payload %r", winner)
            return None
