"""Shared fakes for the draw tests: a controllable clock, an in-memory backend and stores."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Optional

import pytest

from dailydraw.backend import BackendError, DrawError
from dailydraw.coordinator import DrawCoordinator
from dailydraw.entries import EntryLoader
from dailydraw.models import Entry
from dailydraw.notifications import NotificationBroadcaster

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBackend:
    """Stands in for the photo backend: serves entries and resolves draws."""

    def __init__(self, records: Optional[list[dict]] = None) -> None:
        self.records = records or []
        self.fetch_failures = 0
        self.fetch_calls = 0
        self.draw_calls = 0
        self.draw_winner_id: Optional[str] = None
        self.draw_exception: Optional[Exception] = None
        self.draw_gate: Optional[asyncio.Event] = None
        self.draw_started = asyncio.Event()
        self.current_winner: Optional[dict] = None

    async def fetch_entries(self) -> list[Entry]:
        self.fetch_calls += 1
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise BackendError("GET /api/photos/lottery-feed responded with status 503", status=503)
        return [Entry.from_backend(record) for record in self.records]

    async def trigger_draw(self) -> Entry:
        self.draw_calls += 1
        self.draw_started.set()
        if self.draw_gate is not None:
            await self.draw_gate.wait()
        if self.draw_exception is not None:
            raise self.draw_exception
        if self.draw_winner_id is None:
            raise DrawError("No photos in draw")
        for record in self.records:
            if str(record["id"]) == self.draw_winner_id:
                record["isWinner"] = True
                return Entry.from_backend(record, winner=True)
        raise DrawError(f"Unknown winner {self.draw_winner_id}")

    async def fetch_current_winner(self) -> Optional[Entry]:
        if self.current_winner is None:
            return None
        return Entry.from_backend(self.current_winner, winner=True)


class MemoryDeadlineStore:
    def __init__(self, deadline: Optional[datetime] = None) -> None:
        self.deadline = deadline
        self.saved: list[datetime] = []

    async def load_deadline(self) -> Optional[datetime]:
        return self.deadline

    async def save_deadline(self, deadline: datetime) -> None:
        self.deadline = deadline
        self.saved.append(deadline)


class RecordingSleep:
    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def photo(entry_id: int, description: str, owner: str = "alice", **extra) -> dict:
    record = {
        "id": entry_id,
        "s3Url": f"https://bucket.example/{entry_id}.jpg",
        "description": description,
        "submittedBy": owner,
        "uploadDate": "2026-03-01T09:30:00",
        "status": "IN_DRAW",
        "isWinner": False,
    }
    record.update(extra)
    return record


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broadcaster(clock):
    return NotificationBroadcaster(clock=clock)


@pytest.fixture
def backend():
    return FakeBackend(
        [photo(1, "Sunset"), photo(2, "Harbour at dawn", owner="bob"), photo(3, "Fog")]
    )


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def loader(backend, broadcaster, sleeper):
    return EntryLoader(backend, broadcaster, max_attempts=3, backoff_base=2.0, sleep=sleeper)


@pytest.fixture
def store():
    return MemoryDeadlineStore()


@pytest.fixture
def make_coordinator(broadcaster, backend, loader, store, clock, sleeper):
    def factory(*, storage=None, sleep=None, cooldown_seconds: float = 5.0) -> DrawCoordinator:
        return DrawCoordinator(
            broadcaster,
            backend,
            loader,
            storage if storage is not None else store,
            cycle_length=timedelta(hours=24),
            cooldown_seconds=cooldown_seconds,
            clock=clock,
            sleep=sleep if sleep is not None else sleeper,
        )

    return factory
