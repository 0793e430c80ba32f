"""Realtime message channel: one logical connection per authenticated session.

Multiplexes message, typing, presence, call-signal and proposal events from a
single read loop, so frames are dispatched in arrival order. Transport drops
are retried with exponential backoff for as long as the session is valid;
nothing here raises into callers on a transient disconnect.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as SchemaError

from chat_client.application.dto.session import Session
from chat_client.application.exceptions import ChannelConnectionError, OutboxFullError
from chat_client.application.ports.channel import ChannelTransport
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.domain.entities.message import Message
from chat_client.domain.events.call_signal import CallSignal
from chat_client.domain.events.presence_changed import PresenceChanged
from chat_client.domain.events.proposal_updated import ProposalUpdated
from chat_client.domain.events.typing_started import TypingStarted
from chat_client.domain.value_objects.enums import CallSignalType
from chat_client.infrastructure.ws.mappers import (
    call_signal_to_event,
    message_to_entity,
    presence_to_event,
    proposal_to_event,
    typing_to_event,
)
from chat_client.infrastructure.ws.protocol import (
    CallSignalFrame,
    ErrorFrame,
    HeartbeatFrame,
    JoinFrame,
    NewMessageFrame,
    PingFrame,
    PresenceFrame,
    ProposalUpdateFrame,
    TypingFrame,
    TypingNoticeFrame,
    call_signal_frame,
    parse_inbound,
)

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
SleepFn = Callable[[float], Awaitable[None]]

_MESSAGE = "message"
_TYPING = "typing"
_PRESENCE = "presence"
_CALL_SIGNAL = "call_signal"
_PROPOSAL = "proposal_update"
_STATUS = "status"
_RECONNECT = "reconnect"
_EVENT_KINDS = (_MESSAGE, _TYPING, _PRESENCE, _CALL_SIGNAL, _PROPOSAL, _STATUS, _RECONNECT)


def calc_backoff(attempt: int, base: float, cap: float) -> float:
    return min(base * (2 ** attempt), cap)


class MessageChannel:
    def __init__(
        self,
        transport: ChannelTransport,
        session: Session,
        *,
        clock: Clock | None = None,
        sleep: SleepFn = asyncio.sleep,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        ping_interval: float = 30.0,
        outbox_limit: int = 100,
        typing_throttle: float = 2.0,
    ) -> None:
        self._transport = transport
        self._session = session
        self._token = session.token
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._ping_interval = ping_interval
        self._outbox_limit = outbox_limit
        self._typing_throttle = typing_throttle

        self._handlers: dict[str, list[Callable[[Any], None]]] = {k: [] for k in _EVENT_KINDS}
        self._outbox: deque[str] = deque()
        self._joined: dict[str, None] = {}
        self._last_typing_sent: dict[str, float] = {}

        self._connected = False
        self._closing = False
        self._auth_failed = False
        self._disconnected_at: float | None = None
        self._task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self.last_error: str | None = None

    # -- state ---------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def auth_failed(self) -> bool:
        return self._auth_failed

    @property
    def queued_frames(self) -> int:
        return len(self._outbox)

    @property
    def joined_conversations(self) -> tuple[str, ...]:
        return tuple(self._joined)

    # -- subscriptions -------------------------------------------------

    def on_message(self, handler: Callable[[Message], None]) -> Unsubscribe:
        return self._subscribe(_MESSAGE, handler)

    def on_typing(self, handler: Callable[[TypingStarted], None]) -> Unsubscribe:
        return self._subscribe(_TYPING, handler)

    def on_presence(self, handler: Callable[[PresenceChanged], None]) -> Unsubscribe:
        return self._subscribe(_PRESENCE, handler)

    def on_call_signal(self, handler: Callable[[CallSignal], None]) -> Unsubscribe:
        return self._subscribe(_CALL_SIGNAL, handler)

    def on_proposal_update(self, handler: Callable[[ProposalUpdated], None]) -> Unsubscribe:
        return self._subscribe(_PROPOSAL, handler)

    def on_status_change(self, handler: Callable[[bool], None]) -> Unsubscribe:
        """``handler(is_connected)`` on every connect/disconnect."""
        return self._subscribe(_STATUS, handler)

    def on_reconnect(self, handler: Callable[[float], None]) -> Unsubscribe:
        """``handler(gap_seconds)`` after a connection is re-established."""
        return self._subscribe(_RECONNECT, handler)

    def _subscribe(self, kind: str, handler: Callable[[Any], None]) -> Unsubscribe:
        handlers = self._handlers[kind]
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def _emit(self, kind: str, payload: Any) -> None:
        for handler in list(self._handlers[kind]):
            try:
                handler(payload)
            except Exception:
                logger.exception("Channel %s handler failed", kind)

    # -- lifecycle -----------------------------------------------------

    async def connect(self, token: str | None = None) -> None:
        """Open the channel and keep it open.

        Raises ChannelConnectionError only when the server rejects the token;
        transient failures are retried in the background.
        """
        if token:
            self._token = token
        if self.is_running:
            logger.debug("Channel already running")
            return

        self._closing = False
        self._auth_failed = False
        try:
            await self._open()
        except ChannelConnectionError as exc:
            if not exc.retryable:
                self._auth_failed = True
                logger.error("Channel authentication rejected: %s", exc.detail)
                raise
            logger.warning("Channel connect failed (%s), retrying in background", exc.detail)
            self._disconnected_at = self._clock.monotonic()

        self._task = asyncio.create_task(
            self._run(), name=f"message-channel-{self._session.user_id}",
        )

    async def close(self) -> None:
        self._closing = True
        current = asyncio.current_task()
        tasks = [t for t in (self._task, self._ping_task) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._ping_task = None
        await self._transport.close()
        self._set_connected(False)
        logger.info("Channel closed")

    async def _open(self) -> None:
        await self._transport.open(self._token)
        gap = None
        if self._disconnected_at is not None:
            gap = self._clock.monotonic() - self._disconnected_at

        try:
            await self._transport.send_text(HeartbeatFrame(user_id=self._session.user_id).dump())
            for conversation_id in self._joined:
                await self._transport.send_text(JoinFrame(conversation_id=conversation_id).dump())
            await self._flush_outbox()
        except ChannelConnectionError:
            await self._transport.close()
            raise

        self._disconnected_at = None
        self._set_connected(True)
        self._start_ping()
        logger.info("Channel connected (user=%s)", self._session.user_id)
        if gap is not None:
            self._emit(_RECONNECT, gap)

    async def _flush_outbox(self) -> None:
        while self._outbox:
            raw = self._outbox.popleft()
            try:
                await self._transport.send_text(raw)
            except ChannelConnectionError:
                self._outbox.appendleft(raw)
                raise

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            if self._connected:
                await self._read_loop()
                self._handle_drop()
                attempt = 0
                if self._closing or self._auth_failed:
                    break

            if self._session.is_expired(self._clock.now()):
                logger.warning("Session expired, channel stops reconnecting")
                break

            delay = calc_backoff(attempt, self._base_delay, self._max_delay)
            attempt += 1
            logger.info("Channel reconnecting in %.1fs (attempt %d)", delay, attempt)
            await self._sleep(delay)
            if self._closing:
                break

            try:
                await self._open()
            except ChannelConnectionError as exc:
                if not exc.retryable:
                    self._auth_failed = True
                    logger.error("Channel authentication rejected on reconnect: %s", exc.detail)
                    break
                logger.warning("Reconnect attempt %d failed: %s", attempt, exc.detail)
            else:
                attempt = 0

    async def _read_loop(self) -> None:
        while True:
            try:
                raw = await self._transport.receive_text()
            except ChannelConnectionError as exc:
                if not exc.retryable:
                    self._auth_failed = True
                    logger.error("Channel closed by server: %s", exc.detail)
                return
            if raw is None:
                return
            self._dispatch(raw)

    def _handle_drop(self) -> None:
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None
        self._disconnected_at = self._clock.monotonic()
        self._set_connected(False)
        logger.warning("Channel disconnected")

    def _set_connected(self, value: bool) -> None:
        if self._connected == value:
            return
        self._connected = value
        self._emit(_STATUS, value)

    def _start_ping(self) -> None:
        if self._ping_interval <= 0:
            return
        if self._ping_task is not None:
            self._ping_task.cancel()
        self._ping_task = asyncio.create_task(self._ping_loop(), name="message-channel-ping")

    async def _ping_loop(self) -> None:
        try:
            while self._connected:
                await asyncio.sleep(self._ping_interval)
                await self._transport.send_text(PingFrame().dump())
        except asyncio.CancelledError:
            pass
        except ChannelConnectionError:
            logger.debug("Ping failed, waiting for read loop to notice the drop")

    # -- inbound -------------------------------------------------------

    def _dispatch(self, raw: str) -> None:
        try:
            frame = parse_inbound(raw)
        except SchemaError:
            logger.debug("Ignoring unrecognised frame: %.200s", raw)
            return

        if isinstance(frame, NewMessageFrame):
            self._emit(_MESSAGE, message_to_entity(frame.message))
        elif isinstance(frame, TypingFrame):
            self._emit(_TYPING, typing_to_event(frame))
        elif isinstance(frame, PresenceFrame):
            self._emit(_PRESENCE, presence_to_event(frame))
        elif isinstance(frame, CallSignalFrame):
            self._emit(_CALL_SIGNAL, call_signal_to_event(frame))
        elif isinstance(frame, ProposalUpdateFrame):
            self._emit(_PROPOSAL, proposal_to_event(frame))
        elif isinstance(frame, ErrorFrame):
            self.last_error = frame.error or "Server error"
            logger.warning("Server error frame: %s", self.last_error)
        else:
            logger.debug("Control frame: %s", frame.type)

    # -- outbound ------------------------------------------------------

    async def send_typing(self, conversation_id: str) -> bool:
        """Emit a typing notice, at most once per throttle window.

        Returns False when throttled or when the channel is down; typing
        notices are not queued.
        """
        if not self._connected:
            logger.debug("Typing notice rejected: channel disconnected")
            return False
        now = self._clock.monotonic()
        last = self._last_typing_sent.get(conversation_id)
        if last is not None and now - last < self._typing_throttle:
            return False
        frame = TypingNoticeFrame(conversation_id=conversation_id, user_id=self._session.user_id)
        sent = await self._send(frame.dump(), queue_if_offline=False)
        if sent:
            self._last_typing_sent[conversation_id] = now
        return sent

    async def send_call_signal(
        self,
        target_user_id: str,
        session_id: str,
        signal_type: CallSignalType,
        *,
        appointment_id: str | None = None,
    ) -> bool:
        """Send a call signal; returns False if it was queued for reconnect.

        Raises OutboxFullError when the reconnect queue is full.
        """
        frame = call_signal_frame(
            signal_type,
            target_user_id=target_user_id,
            session_id=session_id,
            user_id=self._session.user_id,
            sender_name=self._session.display_name,
            appointment_id=appointment_id,
        )
        return await self._send(frame.dump())

    async def join_conversation(self, conversation_id: str) -> None:
        self._joined[conversation_id] = None
        if self._connected:
            await self._send(JoinFrame(conversation_id=conversation_id).dump(), queue_if_offline=False)

    def leave_conversation(self, conversation_id: str) -> None:
        self._joined.pop(conversation_id, None)
        self._last_typing_sent.pop(conversation_id, None)

    async def _send(self, raw: str, *, queue_if_offline: bool = True) -> bool:
        if self._connected:
            try:
                await self._transport.send_text(raw)
                return True
            except ChannelConnectionError as exc:
                logger.warning("Send failed, connection lost: %s", exc.detail)
        if not queue_if_offline:
            return False
        if len(self._outbox) >= self._outbox_limit:
            raise OutboxFullError(f"Outbox full ({self._outbox_limit} frames queued)")
        self._outbox.append(raw)
        logger.debug("Frame queued until reconnect (%d queued)", len(self._outbox))
        return False
