"""Data models used for draw state, entries and notifications."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Set

from .milestones import Milestone


class EntryStatus(enum.Enum):
    PENDING = "pending"
    WINNER = "winner"


class CycleStatus(enum.Enum):
    COUNTING = "counting"
    DRAWING = "drawing"
    COOLDOWN = "cooldown"


class NotificationType(enum.Enum):
    COUNTDOWN = "countdown"
    DRAW_STARTED = "draw_started"
    WINNER = "winner"
    UPLOAD = "upload"
    ERROR = "error"
    SYSTEM = "system"
    TEST = "test"

    @property
    def icon(self) -> str:
        return _TYPE_ICONS[self]


_TYPE_ICONS = {
    NotificationType.COUNTDOWN: "⏰",
    NotificationType.DRAW_STARTED: "🎰",
    NotificationType.WINNER: "🏆",
    NotificationType.UPLOAD: "📸",
    NotificationType.ERROR: "⚠️",
    NotificationType.SYSTEM: "🔔",
    NotificationType.TEST: "🧪",
}


def _first_present(payload: dict, *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings or epoch milliseconds; naive values are treated as UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class Entry:
    """A submitted photo that is eligible for the draw."""
    id: str
    image_ref: str
    description: str
    owner_ref: str
    uploaded_at: Optional[datetime] = None
    status: EntryStatus = EntryStatus.PENDING

    @property
    def is_winner(self) -> bool:
        return self.status is EntryStatus.WINNER

    def to_payload(self) -> dict:
        """Serialize the entry to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "image_ref": self.image_ref,
            "description": self.description,
            "owner_ref": self.owner_ref,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "status": self.status.value,
        }

    @classmethod
    def from_backend(cls, payload: dict, *, winner: bool = False) -> "Entry":
        """Build an entry from a backend photo record.

        The backend has shipped several field names over time, so image,
        owner and upload date are looked up under each of them.
        """
        entry_id = _first_present(payload, "id", "winnerId")
        if entry_id is None:
            raise ValueError(f"Entry payload has no id: {payload!r}")
        is_winner = winner or bool(payload.get("isWinner", False))
        return cls(
            id=str(entry_id),
            image_ref=str(_first_present(payload, "imageRef", "s3Url", "image", "s3url", "url") or ""),
            description=str(_first_present(payload, "description", "filename") or "Untitled"),
            owner_ref=str(_first_present(payload, "ownerRef", "user", "submittedBy") or "Anonymous"),
            uploaded_at=_parse_timestamp(_first_present(payload, "uploadedAt", "uploadDate")),
            status=EntryStatus.WINNER if is_winner else EntryStatus.PENDING,
        )


@dataclass(slots=True)
class Notification:
    """An event delivered to subscribers and kept in the broadcaster history."""
    id: int
    type: NotificationType
    title: str
    message: str
    created_at: datetime
    urgent: bool = False
    read: bool = False
    payload: Optional[dict] = None
    icon: str = ""

    def to_payload(self) -> dict:
        """Serialize the notification into the observer-facing event shape."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "urgent": self.urgent,
            "created_at": self.created_at.isoformat(),
            "read": self.read,
            "payload": self.payload,
            "icon": self.icon,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "Notification":
        """Reconstruct a Notification from serialized payload data."""
        created_at = datetime.fromisoformat(payload["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        notification_type = NotificationType(payload["type"])
        return cls(
            id=int(payload["id"]),
            type=notification_type,
            title=str(payload["title"]),
            message=str(payload["message"]),
            created_at=created_at,
            urgent=bool(payload.get("urgent", False)),
            read=bool(payload.get("read", False)),
            payload=payload.get("payload"),
            icon=str(payload.get("icon") or notification_type.icon),
        )


@dataclass(slots=True)
class DrawCycle:
    """The authoritative temporal state of the current draw period."""
    deadline: datetime
    cycle_length: timedelta
    fired_milestones: Set[Milestone] = field(default_factory=set)
    last_observed: Optional[int] = None
    status: CycleStatus = CycleStatus.COUNTING

    @classmethod
    def starting_at(cls, now: datetime, cycle_length: timedelta) -> "DrawCycle":
        return cls(deadline=now + cycle_length, cycle_length=cycle_length)

    def remaining_seconds(self, now: datetime) -> int:
        # floored to whole seconds
        return int((self.deadline - now) // timedelta(seconds=1))
