"""In-process notification hub with a bounded, unread-aware history."""

from __future__ import annotations

import itertools
import logging
from datetime import UTC, datetime
from typing import Callable, Dict, Iterable, Optional, Protocol, Sequence, Union, runtime_checkable

from .milestones import Milestone
from .models import Entry, Notification, NotificationType

log = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


@runtime_checkable
class NotificationObserver(Protocol):
    def on_notification(self, notification: Notification) -> None:
        ...


class NotificationSink(Protocol):
    """Out-of-band display target, e.g. a chat channel or a desktop toast."""

    def show(
        self,
        title: str,
        message: str,
        *,
        icon: str,
        tag: str,
        require_interaction: bool,
    ) -> None:
        ...


Observer = Union[NotificationObserver, Callable[[Notification], None]]
HistoryListener = Callable[[Sequence[Notification]], None]


class Subscription:
    """Handle returned by :meth:`NotificationBroadcaster.subscribe`."""

    __slots__ = ("_broadcaster", "_token")

    def __init__(self, broadcaster: "NotificationBroadcaster", token: int) -> None:
        self._broadcaster = broadcaster
        self._token = token

    @property
    def active(self) -> bool:
        return self._broadcaster._has_subscriber(self._token)

    def unsubscribe(self) -> None:
        self._broadcaster._remove_subscriber(self._token)

    __call__ = unsubscribe


class NotificationBroadcaster:
    """Fans notifications out to subscribers and keeps the most recent ones.

    Delivery is synchronous and ordered by publish order. A failing observer
    is logged and skipped; neither the publisher nor other observers see the
    error. After delivery the notification is forwarded to the optional
    sink, whose failures are also swallowed.
    """

    def __init__(
        self,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        sink: Optional[NotificationSink] = None,
        history_listener: Optional[HistoryListener] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        if history_limit <= 0:
            raise ValueError("history_limit must be greater than zero")
        self.history_limit = history_limit
        self.sink = sink
        self.history_listener = history_listener
        self._clock = clock
        self._subscribers: Dict[int, Callable[[Notification], None]] = {}
        self._tokens = itertools.count(1)
        self._history: list[Notification] = []
        self._last_id = 0

    # --- Subscriptions -----------------------------------------------------

    def subscribe(self, observer: Observer) -> Subscription:
        if isinstance(observer, NotificationObserver):
            callback = observer.on_notification
        elif callable(observer):
            callback = observer
        else:
            raise TypeError("observer must be callable or define on_notification()")
        token = next(self._tokens)
        self._subscribers[token] = callback
        log.debug("Subscriber %s registered (%d active)", token, len(self._subscribers))
        return Subscription(self, token)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _has_subscriber(self, token: int) -> bool:
        return token in self._subscribers

    def _remove_subscriber(self, token: int) -> None:
        if self._subscribers.pop(token, None) is not None:
            log.debug("Subscriber %s removed (%d active)", token, len(self._subscribers))

    # --- Publishing --------------------------------------------------------

    def publish(
        self,
        type: NotificationType,
        title: str,
        message: str,
        *,
        urgent: bool = False,
        payload: Optional[dict] = None,
        icon: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            id=self._next_id(),
            type=type,
            title=title,
            message=message,
            created_at=self._clock(),
            urgent=urgent,
            read=False,
            payload=payload,
            icon=icon or type.icon,
        )
        log.info("Broadcasting %s notification %s: %s", type.value, notification.id, title)

        self._history.insert(0, notification)
        del self._history[self.history_limit:]

        for token, callback in list(self._subscribers.items()):
            try:
                callback(notification)
            except Exception:
                log.exception("Notification subscriber %s failed", token)

        self._forward_to_sink(notification)
        self._history_changed()
        return notification

    def _next_id(self) -> int:
        # millisecond timestamp scaled up so ids sort by time and never repeat
        candidate = int(self._clock().timestamp() * 1000) * 1000
        self._last_id = max(candidate, self._last_id + 1)
        return self._last_id

    def _forward_to_sink(self, notification: Notification) -> None:
        if self.sink is None:
            return
        try:
            self.sink.show(
                notification.title,
                notification.message,
                icon=notification.icon,
                tag=notification.type.value,
                require_interaction=notification.urgent,
            )
        except Exception as exc:
            log.warning("Notification sink failed for %s: %s", notification.id, exc)

    def _history_changed(self) -> None:
        if self.history_listener is None:
            return
        try:
            self.history_listener(self.history())
        except Exception:
            log.exception("Notification history listener failed")

    # --- History -----------------------------------------------------------

    def history(self) -> tuple[Notification, ...]:
        return tuple(self._history)

    def unread(self) -> tuple[Notification, ...]:
        return tuple(n for n in self._history if not n.read)

    def unread_count(self) -> int:
        return sum(1 for n in self._history if not n.read)

    def mark_read(self, notification_id: int) -> bool:
        for notification in self._history:
            if notification.id == notification_id:
                if notification.read:
                    return False
                notification.read = True
                self._history_changed()
                return True
        return False

    def mark_all_read(self) -> int:
        changed = 0
        for notification in self._history:
            if not notification.read:
                notification.read = True
                changed += 1
        if changed:
            self._history_changed()
        return changed

    def clear(self) -> None:
        log.info("Clearing %d notification(s)", len(self._history))
        self._history.clear()
        self._history_changed()

    def restore(self, notifications: Iterable[Notification]) -> None:
        """Seed the history from persisted notifications (most recent first)."""
        restored = sorted(notifications, key=lambda n: n.id, reverse=True)
        self._history = restored[: self.history_limit]
        if self._history:
            self._last_id = max(self._last_id, self._history[0].id)

    # --- Typed helpers -----------------------------------------------------

    def countdown(self, milestone: Milestone) -> Notification:
        minutes = milestone.minutes
        if milestone is Milestone.ONE_HOUR:
            title = "⏰ 1 Hour Until Draw!"
            message = "The automated lottery draw is in 1 hour. Make sure your photos are uploaded!"
        elif milestone is Milestone.TEN_MINUTES:
            title = "🚨 10 Minutes Until Draw!"
            message = "Final countdown! Lottery draw happening in 10 minutes."
        else:
            title = "🔥 1 MINUTE LEFT!"
            message = "Lottery drawing in 60 seconds! Get ready..."
        return self.publish(
            NotificationType.COUNTDOWN,
            title,
            message,
            urgent=milestone.urgent,
            payload={"milestone": milestone.name, "minutes_remaining": minutes},
        )

    def draw_started(self, entry_count: int) -> Notification:
        return self.publish(
            NotificationType.DRAW_STARTED,
            "🎰 Lottery Draw Starting!",
            f"Selecting winner from {entry_count} photos. The suspense builds...",
            urgent=True,
            payload={"entry_count": entry_count},
        )

    def winner(self, entry: Entry) -> Notification:
        return self.publish(
            NotificationType.WINNER,
            "🏆 We Have a Winner!",
            f'"{entry.description}" by {entry.owner_ref} won the 24-hour lottery!',
            payload=entry.to_payload(),
        )

    def error(self, message: str) -> Notification:
        return self.publish(NotificationType.ERROR, "⚠️ Error", message, urgent=True)

    def system(self, title: str, message: str) -> Notification:
        return self.publish(NotificationType.SYSTEM, title, message)

    def test(self) -> Notification:
        return self.publish(
            NotificationType.TEST,
            "🧪 Test Notification",
            "This is a test notification to verify the system is working.",
        )
