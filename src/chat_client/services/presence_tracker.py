"""Online/offline classification per user."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.domain.entities.presence import PresenceRecord
from chat_client.domain.value_objects.enums import PresenceStatus
from chat_client.domain.value_objects.timestamps import ensure_utc

logger = logging.getLogger(__name__)

PresenceListener = Callable[[PresenceRecord], None]


class PresenceTracker:
    """Tracks live presence events with a "recently online" fallback.

    Live events from the channel always win. Until one arrives for a user, a
    snapshot timestamp (``seed``) younger than ``recent_window`` classifies the
    user as recently online.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        recent_window: timedelta = timedelta(minutes=5),
    ) -> None:
        self._clock = clock or SystemClock()
        self._recent_window = recent_window
        self._records: dict[str, PresenceRecord] = {}
        self._listeners: list[PresenceListener] = []

    def mark_online(self, user_id: str) -> None:
        self._store(PresenceRecord(user_id=user_id, online=True, last_seen=self._clock.now()))

    def mark_offline(self, user_id: str, last_seen_at: datetime | None = None) -> None:
        previous = self._records.get(user_id)
        if last_seen_at is not None:
            last_seen = ensure_utc(last_seen_at)
        elif previous is not None:
            last_seen = previous.last_seen
        else:
            last_seen = None
        self._store(PresenceRecord(user_id=user_id, online=False, last_seen=last_seen))

    def seed(self, user_id: str, last_active_at: datetime | None) -> None:
        """Record a REST snapshot; ignored once a live event is known."""
        current = self._records.get(user_id)
        if current is not None and current.live:
            return
        if last_active_at is None:
            return
        last_active_at = ensure_utc(last_active_at)
        if current is not None and current.last_seen and current.last_seen >= last_active_at:
            return
        self._store(
            PresenceRecord(user_id=user_id, online=False, last_seen=last_active_at, live=False),
        )

    def classify(self, user_id: str) -> PresenceStatus:
        record = self._records.get(user_id)
        if record is None:
            return PresenceStatus.OFFLINE
        if record.live:
            return PresenceStatus.ONLINE if record.online else PresenceStatus.OFFLINE
        if record.last_seen and self._clock.now() - record.last_seen < self._recent_window:
            return PresenceStatus.RECENTLY_ONLINE
        return PresenceStatus.OFFLINE

    def is_online(self, user_id: str) -> bool:
        return self.classify(user_id) != PresenceStatus.OFFLINE

    def last_seen(self, user_id: str) -> datetime | None:
        record = self._records.get(user_id)
        return record.last_seen if record else None

    def record(self, user_id: str) -> PresenceRecord | None:
        return self._records.get(user_id)

    @property
    def online_users(self) -> frozenset[str]:
        return frozenset(uid for uid in self._records if self.is_online(uid))

    def describe(self, user_id: str) -> str:
        """Status line for a chat header."""
        status = self.classify(user_id)
        if status == PresenceStatus.ONLINE:
            return "Online"
        last_seen = self.last_seen(user_id)
        if last_seen is None:
            return "Offline"
        minutes = int((self._clock.now() - last_seen).total_seconds() // 60)
        if status == PresenceStatus.RECENTLY_ONLINE:
            return "Active just now" if minutes < 1 else f"Active {minutes}m ago"
        if minutes < 60:
            return f"Last seen {max(minutes, 1)}m ago"
        if minutes < 24 * 60:
            return f"Last seen {minutes // 60}h ago"
        return f"Last seen {last_seen:%b %d}"

    def subscribe(self, listener: PresenceListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _store(self, record: PresenceRecord) -> None:
        self._records[record.user_id] = record
        logger.debug("Presence %s: online=%s live=%s", record.user_id, record.online, record.live)
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Presence listener failed")
