"""SQLite persistence helpers for the draw deadline and notification history."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional, Sequence

from .models import Notification, NotificationType

LOGGER = logging.getLogger(__name__)

DEADLINE_KEY = "next_draw_at"


class StateStorage:
    """Async wrapper around a single SQLite database holding durable draw state."""

    def __init__(self, base_dir: Path) -> None:
        """Initialise the storage helper with the base data directory."""
        self.base_dir = base_dir
        self.db_path = self.base_dir / "draw.sqlite"
        self._lock = asyncio.Lock()
        self._pending_saves: set[asyncio.Task] = set()

    async def load_deadline(self) -> Optional[datetime]:
        """Return the persisted deadline of the active cycle, if any."""
        async with self._lock:
            raw = await asyncio.to_thread(self._read_metadata, DEADLINE_KEY)
        if raw is None:
            return None
        try:
            millis = int(raw)
        except ValueError:
            LOGGER.warning("Ignoring malformed persisted deadline %r", raw)
            return None
        return datetime.fromtimestamp(millis / 1000, tz=UTC)

    async def save_deadline(self, deadline: datetime) -> None:
        """Persist the deadline as milliseconds since the epoch."""
        millis = int(deadline.timestamp() * 1000)
        async with self._lock:
            await asyncio.to_thread(self._write_metadata, DEADLINE_KEY, str(millis))

    async def load_notifications(self) -> list[Notification]:
        """Load the notification history, most recent first."""
        async with self._lock:
            return await asyncio.to_thread(self._read_notifications)

    async def save_notifications(self, notifications: Sequence[Notification]) -> None:
        """Replace the stored notification history with the provided snapshot."""
        snapshot = list(notifications)
        async with self._lock:
            await asyncio.to_thread(self._write_notifications, snapshot)

    def schedule_notifications_save(self, notifications: Sequence[Notification]) -> None:
        """Queue a history save from synchronous code running inside the event loop."""
        task = asyncio.get_running_loop().create_task(
            self.save_notifications(notifications)
        )
        self._pending_saves.add(task)
        task.add_done_callback(self._on_save_done)

    async def flush(self) -> None:
        """Wait for any queued history saves to complete."""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)

    def _on_save_done(self, task: asyncio.Task) -> None:
        self._pending_saves.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Failed to persist notification history: %s", exc)

    # --- Internal helpers -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self._ensure_schema(conn)
        return conn

    def _read_metadata(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def _write_metadata(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO metadata(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def _read_notifications(self) -> list[Notification]:
        conn = self._connect()
        try:
            notifications: list[Notification] = []
            for row in conn.execute("SELECT * FROM notifications ORDER BY position"):
                try:
                    notification_type = NotificationType(row["type"])
                except ValueError:
                    LOGGER.warning("Skipping stored notification %s with unknown type %r", row["id"], row["type"])
                    continue
                notifications.append(
                    Notification(
                        id=int(row["id"]),
                        type=notification_type,
                        title=row["title"],
                        message=row["message"],
                        created_at=datetime.fromisoformat(row["created_at"]),
                        urgent=bool(row["urgent"]),
                        read=bool(row["read"]),
                        payload=json.loads(row["payload"]) if row["payload"] else None,
                        icon=row["icon"] or notification_type.icon,
                    )
                )
            return notifications
        finally:
            conn.close()

    def _write_notifications(self, notifications: list[Notification]) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            conn.execute("DELETE FROM notifications")
            if notifications:
                conn.executemany(
                    """
                    INSERT INTO notifications(
                        id,
                        position,
                        type,
                        title,
                        message,
                        urgent,
                        created_at,
                        read,
                        payload,
                        icon
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            notification.id,
                            position,
                            notification.type.value,
                            notification.title,
                            notification.message,
                            1 if notification.urgent else 0,
                            notification.created_at.isoformat(),
                            1 if notification.read else 0,
                            json.dumps(notification.payload) if notification.payload is not None else None,
                            notification.icon,
                        )
                        for position, notification in enumerate(notifications)
                    ],
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                urgent INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                read INTEGER NOT NULL,
                payload TEXT,
                icon TEXT
            )
            """
        )
