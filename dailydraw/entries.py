"""Fetch-with-retry access to the current set of draw entries."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from .backend import BackendError
from .models import Entry
from .notifications import NotificationBroadcaster

log = logging.getLogger(__name__)


class EntrySource(Protocol):
    async def fetch_entries(self) -> list[Entry]:
        ...


class EntryLoader:
    """Loads entries with backoff between attempts and a sticky failure state.

    Once every attempt of a load has failed the loader stops fetching and
    keeps returning an empty snapshot until :meth:`retry` is called, so a
    dead backend produces a single error notification rather than one per
    caller.
    """

    def __init__(
        self,
        source: EntrySource,
        broadcaster: NotificationBroadcaster,
        *,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be greater than zero")
        self.source = source
        self.broadcaster = broadcaster
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self.attempts = 0
        self.error: Optional[str] = None
        self.entries: list[Entry] = []
        self._lock = asyncio.Lock()

    @property
    def failed(self) -> bool:
        return self.error is not None

    async def load(self) -> list[Entry]:
        async with self._lock:
            if self.error is not None:
                log.debug("Entry loader is in error state; waiting for a manual retry.")
                return []
            return await self._load_with_retry()

    async def retry(self) -> list[Entry]:
        async with self._lock:
            log.info("Manual entry reload requested.")
            self.attempts = 0
            self.error = None
            return await self._load_with_retry()

    async def _load_with_retry(self) -> list[Entry]:
        self.attempts = 0
        last_error: Optional[BackendError] = None
        while self.attempts < self.max_attempts:
            self.attempts += 1
            try:
                entries = await self.source.fetch_entries()
            except BackendError as exc:
                last_error = exc
                log.warning(
                    "Loading entries failed (attempt %d/%d): %s",
                    self.attempts,
                    self.max_attempts,
                    exc,
                )
                if self.attempts < self.max_attempts:
                    await self._sleep(self.backoff_base * self.attempts)
                continue
            self.entries = list(entries)
            self.attempts = 0
            log.info("Loaded %d entries.", len(self.entries))
            return list(self.entries)

        self.entries = []
        self.error = (
            "Unable to load photos. Please check your connection and try again."
        )
        log.error("Giving up on loading entries after %d attempts: %s", self.max_attempts, last_error)
        self.broadcaster.error(f"Failed to load photos: {last_error}")
        return []
