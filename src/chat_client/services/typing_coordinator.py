"""Ephemeral "is typing" flags per peer."""
from __future__ import annotations

import logging
from typing import Callable, Mapping

from chat_client.application.ports.clock import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

TypingListener = Callable[[frozenset[str]], None]


class TypingCoordinator:
    """Keeps one expiry timer per typing user.

    A refreshing event cancels and replaces the user's timer, so timers never
    accumulate; when a timer fires the flag clears and the timer is dropped.
    """

    def __init__(self, scheduler: Scheduler, *, quiet_period: float = 3.0) -> None:
        self._scheduler = scheduler
        self._quiet_period = quiet_period
        self._timers: dict[str, TimerHandle] = {}
        self._listeners: list[TypingListener] = []

    def on_typing_event(self, user_id: str) -> None:
        existing = self._timers.pop(user_id, None)
        if existing is not None:
            existing.cancel()
        self._timers[user_id] = self._scheduler.call_later(
            self._quiet_period, lambda: self._expire(user_id),
        )
        if existing is None:
            self._emit()

    def clear(self, user_id: str) -> None:
        timer = self._timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()
            self._emit()

    def is_typing(self, user_id: str) -> bool:
        return user_id in self._timers

    @property
    def typing_users(self) -> frozenset[str]:
        return frozenset(self._timers)

    def describe(self, names: Mapping[str, str] | None = None) -> str | None:
        users = sorted(self._timers)
        if not users:
            return None
        if len(users) == 1:
            name = (names or {}).get(users[0], "Someone")
            return f"{name} is typing…"
        return f"{len(users)} people are typing…"

    def subscribe(self, listener: TypingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _expire(self, user_id: str) -> None:
        if self._timers.pop(user_id, None) is not None:
            logger.debug("Typing expired for %s", user_id)
            self._emit()

    def _emit(self) -> None:
        users = self.typing_users
        for listener in list(self._listeners):
            try:
                listener(users)
            except Exception:
                logger.exception("Typing listener failed")
