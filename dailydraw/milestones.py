"""Countdown milestones and the helpers used to present the remaining time."""

from __future__ import annotations

import enum
from typing import AbstractSet, FrozenSet, Optional, Tuple


class Milestone(enum.IntEnum):
    """Remaining-time thresholds, in seconds, that fire a countdown notification."""
    ONE_HOUR = 3600
    TEN_MINUTES = 600
    ONE_MINUTE = 60

    @property
    def minutes(self) -> int:
        return self.value // 60

    @property
    def urgent(self) -> bool:
        return self is not Milestone.ONE_HOUR


FINAL_STAGE_SECONDS = 600
URGENT_STAGE_SECONDS = 3600


def evaluate(
    remaining_seconds: int,
    fired: AbstractSet[Milestone],
    previous_seconds: Optional[int] = None,
) -> Tuple[Optional[Milestone], FrozenSet[Milestone]]:
    """Return the milestone that fires at ``remaining_seconds`` and the updated fired set.

    A milestone fires on the tick where the remaining time equals its
    threshold. Tick jitter can make consecutive ticks observe values two
    seconds apart, so a threshold sitting exactly between ``previous_seconds``
    and ``remaining_seconds`` also counts as observed. Larger gaps (a
    suspended process) are not replayed.
    """
    fired_set = frozenset(fired)
    stepped_over = (
        remaining_seconds + 1
        if previous_seconds is not None and previous_seconds - remaining_seconds == 2
        else None
    )
    for milestone in Milestone:
        if milestone in fired_set:
            continue
        if milestone.value in (remaining_seconds, stepped_over):
            return milestone, fired_set | {milestone}
    return None, fired_set


def countdown_stage(remaining_seconds: int) -> str:
    if remaining_seconds <= FINAL_STAGE_SECONDS:
        return "final"
    if remaining_seconds <= URGENT_STAGE_SECONDS:
        return "urgent"
    return "normal"


def format_remaining(remaining_seconds: int) -> str:
    seconds = max(int(remaining_seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
