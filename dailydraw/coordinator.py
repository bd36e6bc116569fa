from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol

from .entries import EntryLoader
from .milestones import evaluate, format_remaining
from .models import CycleStatus, DrawCycle, Entry, EntryStatus
from .notifications import NotificationBroadcaster

log = logging.getLogger(__name__)


class WinnerSelector(Protocol):
    async def trigger_draw(self) -> Entry:
        ...

    async def fetch_current_winner(self) -> Optional[Entry]:
        ...


class DeadlineStore(Protocol):
    async def load_deadline(self) -> Optional[datetime]:
        ...

    async def save_deadline(self, deadline: datetime) -> None:
        ...


class DrawCoordinator:
    """Drives the recurring draw: countdown milestones, the draw itself and rescheduling.

    The only durable state is the absolute deadline of the active cycle. It is
    written before the cycle is relied upon, so a restart resumes the same
    countdown. ``tick`` is expected to be called once per second; it is a
    no-op while a draw or its cooldown is in progress.
    """

    def __init__(
        self,
        broadcaster: NotificationBroadcaster,
        selector: WinnerSelector,
        loader: EntryLoader,
        storage: DeadlineStore,
        *,
        cycle_length: timedelta = timedelta(hours=24),
        cooldown_seconds: float = 5.0,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.broadcaster = broadcaster
        self.selector = selector
        self.loader = loader
        self.storage = storage
        self.cycle_length = cycle_length
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self.cycle: Optional[DrawCycle] = None
        self.current_winner: Optional[Entry] = None
        self._entries: list[Entry] = []
        self._closed = False

    # --- Read-only views ---------------------------------------------------

    @property
    def status(self) -> Optional[CycleStatus]:
        return self.cycle.status if self.cycle else None

    @property
    def deadline(self) -> Optional[datetime]:
        return self.cycle.deadline if self.cycle else None

    @property
    def entries(self) -> tuple[Entry, ...]:
        """Entry snapshot in which only the current winner carries the winner flag."""
        winner_id = self.current_winner.id if self.current_winner else None
        if winner_id is None:
            return tuple(self._entries)
        view: list[Entry] = []
        for entry in self._entries:
            flagged = entry.id == winner_id
            if entry.is_winner == flagged:
                view.append(entry)
            else:
                view.append(
                    replace(entry, status=EntryStatus.WINNER if flagged else EntryStatus.PENDING)
                )
        return tuple(view)

    @property
    def closed(self) -> bool:
        return self._closed

    def remaining_seconds(self) -> int:
        if self.cycle is None:
            return 0
        return max(self.cycle.remaining_seconds(self._clock()), 0)

    def minutes_until_draw(self) -> int:
        return self.remaining_seconds() // 60

    # --- Lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        now = self._clock()
        deadline = await self.storage.load_deadline()
        if self._closed:
            return
        if deadline is not None and deadline > now:
            self.cycle = DrawCycle(deadline=deadline, cycle_length=self.cycle_length)
            log.info(
                "Resuming draw cycle; next draw at %s (%s remaining).",
                deadline.isoformat(),
                format_remaining(self.cycle.remaining_seconds(now)),
            )
        else:
            if deadline is not None:
                log.warning(
                    "Persisted draw deadline %s has already passed; starting a fresh cycle without drawing.",
                    deadline.isoformat(),
                )
            await self._start_new_cycle()

        await self.refresh_entries()
        await self._load_current_winner()

    def close(self) -> None:
        if not self._closed:
            log.info("Draw coordinator closed.")
        self._closed = True

    # --- Entries -----------------------------------------------------------

    async def refresh_entries(self) -> list[Entry]:
        entries = await self.loader.load()
        if self._closed:
            return list(self.entries)
        self._entries = list(entries)
        return list(self.entries)

    async def retry_entries(self) -> list[Entry]:
        entries = await self.loader.retry()
        if self._closed:
            return list(self.entries)
        self._entries = list(entries)
        return list(self.entries)

    async def _load_current_winner(self) -> None:
        try:
            winner = await self.selector.fetch_current_winner()
        except Exception as exc:
            log.warning("Unable to load the current winner: %s", exc)
            winner = None
        if self._closed:
            return
        if winner is None:
            winner = next((entry for entry in self._entries if entry.is_winner), None)
        self.current_winner = winner

    # --- Ticking -----------------------------------------------------------

    async def tick(self) -> None:
        cycle = self.cycle
        if self._closed or cycle is None or cycle.status is not CycleStatus.COUNTING:
            return

        remaining = cycle.remaining_seconds(self._clock())
        if remaining <= 0:
            cycle.status = CycleStatus.DRAWING
            log.info("Countdown reached zero; running the automated draw.")
            await self._run_draw(cycle)
            return

        milestone, fired = evaluate(remaining, cycle.fired_milestones, cycle.last_observed)
        cycle.last_observed = remaining
        if milestone is not None:
            cycle.fired_milestones = set(fired)
            log.info("Countdown milestone reached: %d minute(s) remaining.", milestone.minutes)
            self.broadcaster.countdown(milestone)

    async def _run_draw(self, cycle: DrawCycle) -> None:
        entries = list(self._entries)
        if not entries:
            log.warning("No entries available for the automated draw; starting a new cycle.")
            await self._start_new_cycle()
            await self.refresh_entries()
            return

        self.broadcaster.draw_started(len(entries))
        try:
            winner = await self.selector.trigger_draw()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closed:
                return
            log.exception("Automated draw failed")
            self.broadcaster.error(f"Automated lottery failed: {exc}")
        else:
            if self._closed:
                log.info("Discarding draw result %s received after shutdown.", winner.id)
                return
            winner = self._apply_winner(winner)
            log.info(
                'Automated draw complete; winner "%s" by %s (%s).',
                winner.description,
                winner.owner_ref,
                winner.id,
            )
            self.broadcaster.winner(winner)

        cycle.status = CycleStatus.COOLDOWN
        await self._sleep(self.cooldown_seconds)
        if self._closed:
            return
        await self._start_new_cycle()
        await self.refresh_entries()

    def _apply_winner(self, winner: Entry) -> Entry:
        winner.status = EntryStatus.WINNER
        for index, entry in enumerate(self._entries):
            if entry.id == winner.id:
                self._entries[index] = winner
                break
        else:
            self._entries.append(winner)
        self.current_winner = winner
        return winner

    async def _start_new_cycle(self) -> None:
        cycle = DrawCycle.starting_at(self._clock(), self.cycle_length)
        try:
            await self.storage.save_deadline(cycle.deadline)
        except Exception:
            log.exception(
                "Failed to persist the next draw deadline; continuing with the in-memory cycle."
            )
        if self._closed:
            return
        self.cycle = cycle
        log.info("New draw cycle started; next draw at %s.", cycle.deadline.isoformat())
