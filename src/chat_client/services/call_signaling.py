"""Video-call handshake overlaid on the message channel.

Outgoing: idle → inviting → ringing_local → accepted | declined | cancelled.
Incoming: idle → ringing_remote → accepted | idle.
Only signals whose sender and session id match the pending call move the
machine; anything else is logged and ignored.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Coroutine

from chat_client.application.dto.session import Session
from chat_client.application.exceptions import AppError, CallStateError, PeerOfflineError
from chat_client.application.ports.api import VideoApi
from chat_client.application.ports.channel import CallSignalSender
from chat_client.application.ports.clock import Scheduler, TimerHandle
from chat_client.domain.entities.call_session import CallSession
from chat_client.domain.events.call_signal import CallSignal
from chat_client.domain.value_objects.enums import (
    CallDirection,
    CallSignalType,
    CallState,
    CallStatus,
)
from chat_client.services.presence_tracker import PresenceTracker

logger = logging.getLogger(__name__)

CallListener = Callable[[CallSession], None]

_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.IDLE: frozenset({CallState.INVITING, CallState.RINGING_REMOTE}),
    CallState.INVITING: frozenset({CallState.RINGING_LOCAL, CallState.IDLE}),
    CallState.RINGING_LOCAL: frozenset({
        CallState.ACCEPTED,
        CallState.DECLINED,
        CallState.CANCELLED,
        CallState.IDLE,
    }),
    CallState.RINGING_REMOTE: frozenset({CallState.ACCEPTED, CallState.IDLE}),
    CallState.ACCEPTED: frozenset({CallState.ENDED, CallState.IDLE}),
    CallState.DECLINED: frozenset({CallState.IDLE}),
    CallState.CANCELLED: frozenset({CallState.IDLE}),
    CallState.ENDED: frozenset({CallState.IDLE}),
}

_STATUS_FOR_STATE: dict[CallState, CallStatus] = {
    CallState.ACCEPTED: CallStatus.ACCEPTED,
    CallState.DECLINED: CallStatus.DECLINED,
    CallState.CANCELLED: CallStatus.CANCELLED,
    CallState.ENDED: CallStatus.ENDED,
}


class CallSignaling:
    def __init__(
        self,
        channel: CallSignalSender,
        api: VideoApi,
        presence: PresenceTracker,
        session: Session,
        scheduler: Scheduler,
        *,
        decline_display: float = 2.0,
        ring_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._api = api
        self._presence = presence
        self._session = session
        self._scheduler = scheduler
        self._decline_display = decline_display
        self._ring_timeout = ring_timeout

        self._state = CallState.IDLE
        self._call: CallSession | None = None
        self._timer: TimerHandle | None = None
        self._attempt = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._accepted_listeners: list[CallListener] = []
        self._state_listeners: list[Callable[[CallState], None]] = []

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def call(self) -> CallSession | None:
        return self._call

    def on_accepted(self, listener: CallListener) -> Callable[[], None]:
        """``listener(call)`` when a call is accepted by either side."""
        return _add(self._accepted_listeners, listener)

    def on_state_change(self, listener: Callable[[CallState], None]) -> Callable[[], None]:
        return _add(self._state_listeners, listener)

    # -- outgoing ------------------------------------------------------

    async def start_call(
        self,
        peer_id: str,
        *,
        conversation_id: str | None = None,
        appointment_id: str | None = None,
    ) -> CallSession:
        if self._state != CallState.IDLE:
            raise CallStateError(f"Cannot start a call while {self._state}")
        if peer_id == self._session.user_id:
            raise CallStateError("Cannot call yourself")
        if not self._presence.is_online(peer_id):
            raise PeerOfflineError(f"User {peer_id} is offline")

        self._attempt += 1
        attempt = self._attempt
        self._transition(CallState.INVITING)
        try:
            session_id = await self._api.create_video_session(peer_id, appointment_id=appointment_id)
        except AppError:
            if self._is_current(attempt):
                self._transition(CallState.IDLE)
            raise

        call = CallSession(
            session_id=session_id,
            peer_id=peer_id,
            direction=CallDirection.OUTGOING,
            conversation_id=conversation_id,
            appointment_id=appointment_id,
        )
        if not self._is_current(attempt):
            logger.info("Call to %s cancelled before invite, ending %s", peer_id, session_id)
            await self._end_session(session_id, reason="cancelled")
            return replace(call, status=CallStatus.CANCELLED)

        self._call = call
        try:
            await self._channel.send_call_signal(
                peer_id, session_id, CallSignalType.VIDEO_INVITE, appointment_id=appointment_id,
            )
        except AppError:
            if self._is_current(attempt):
                self._call = None
                self._transition(CallState.IDLE)
                await self._end_session(session_id, reason="cancelled")
            raise

        if not self._is_current(attempt):
            # cancel() already ended the session; the peer still needs the withdrawal
            logger.info("Call %s cancelled while inviting, withdrawing", session_id)
            await self._send(call, CallSignalType.VIDEO_END)
            return replace(call, status=CallStatus.CANCELLED)

        self._transition(CallState.RINGING_LOCAL)
        return self._call or call

    async def cancel(self) -> None:
        """Withdraw an outgoing invite; state is idle before any network call.

        While the invite is still in flight the withdrawal is sent by
        ``start_call`` once the invite has gone out.
        """
        if self._state not in (CallState.INVITING, CallState.RINGING_LOCAL):
            raise CallStateError(f"Nothing to cancel while {self._state}")
        invited = self._state == CallState.RINGING_LOCAL
        call = self._call
        self._attempt += 1
        if invited:
            self._transition(CallState.CANCELLED)
        self._reset()

        if call is None:
            return
        if invited:
            await self._send(call, CallSignalType.VIDEO_END)
        await self._end_session(call.session_id, reason="cancelled")

    # -- incoming ------------------------------------------------------

    async def accept_incoming(self) -> CallSession:
        if self._state != CallState.RINGING_REMOTE or self._call is None:
            raise CallStateError(f"No incoming call to accept while {self._state}")
        call = self._call
        self._cancel_timer()
        await self._send(call, CallSignalType.VIDEO_ACCEPT)
        if self._state != CallState.RINGING_REMOTE or self._call is not call:
            raise CallStateError(f"Call {call.session_id} was withdrawn by the caller")
        self._accept(call)
        return self._call or call

    async def decline_incoming(self) -> None:
        if self._state != CallState.RINGING_REMOTE or self._call is None:
            raise CallStateError(f"No incoming call to decline while {self._state}")
        call = self._call
        self._reset()
        await self._send(call, CallSignalType.VIDEO_DECLINE)

    # -- active call ---------------------------------------------------

    async def hang_up(self) -> None:
        if self._state != CallState.ACCEPTED or self._call is None:
            raise CallStateError(f"No active call while {self._state}")
        call = self._call
        self._call = replace(call, status=CallStatus.ENDED)
        self._transition(CallState.ENDED)
        await self._send(call, CallSignalType.VIDEO_END)
        await self._end_session(call.session_id, reason="completed")

    def reset(self) -> None:
        """Dialog closed: drop a finished call and return to idle."""
        if self._state in (CallState.INVITING, CallState.RINGING_LOCAL, CallState.RINGING_REMOTE):
            raise CallStateError(f"Call still pending ({self._state})")
        self._reset()

    # -- inbound signals -----------------------------------------------

    def handle_signal(self, signal: CallSignal) -> None:
        if signal.type == CallSignalType.VIDEO_INVITE:
            self._on_invite(signal)
            return

        call = self._call
        if call is None or signal.sender_id != call.peer_id or signal.session_id != call.session_id:
            logger.debug(
                "Ignoring %s from %s for session %s (state=%s)",
                signal.type, signal.sender_id, signal.session_id, self._state,
            )
            return

        if self._state == CallState.RINGING_LOCAL:
            if signal.type == CallSignalType.VIDEO_ACCEPT:
                self._accept(call)
            elif signal.type == CallSignalType.VIDEO_DECLINE:
                self._call = replace(call, status=CallStatus.DECLINED)
                self._transition(CallState.DECLINED)
                self._timer = self._scheduler.call_later(self._decline_display, self._reset)
            elif signal.type == CallSignalType.VIDEO_END:
                self._reset()
        elif self._state == CallState.RINGING_REMOTE:
            if signal.type in (CallSignalType.VIDEO_END, CallSignalType.VIDEO_DECLINE):
                logger.info("Caller %s withdrew invite %s", call.peer_id, call.session_id)
                self._reset()
        elif self._state == CallState.ACCEPTED:
            if signal.type == CallSignalType.VIDEO_END:
                self._call = replace(call, status=CallStatus.ENDED)
                self._transition(CallState.ENDED)
        else:
            logger.debug("Ignoring %s in state %s", signal.type, self._state)

    def _on_invite(self, signal: CallSignal) -> None:
        if self._state != CallState.IDLE:
            # glare or busy: no tie-break is defined, the newer invite is dropped
            logger.info(
                "Ignoring invite %s from %s while %s", signal.session_id, signal.sender_id, self._state,
            )
            return
        self._call = CallSession(
            session_id=signal.session_id,
            peer_id=signal.sender_id,
            direction=CallDirection.INCOMING,
            appointment_id=signal.appointment_id,
            peer_name=signal.sender_name,
        )
        self._transition(CallState.RINGING_REMOTE)
        self._timer = self._scheduler.call_later(self._ring_timeout, self._ring_timed_out)

    def _ring_timed_out(self) -> None:
        self._timer = None
        if self._state == CallState.RINGING_REMOTE:
            logger.info("Incoming call %s not answered, declining", self._call and self._call.session_id)
            self._spawn(self.decline_incoming())

    # -- helpers -------------------------------------------------------

    def _accept(self, call: CallSession) -> None:
        accepted = replace(call, status=CallStatus.ACCEPTED)
        self._call = accepted
        self._transition(CallState.ACCEPTED)
        for listener in list(self._accepted_listeners):
            try:
                listener(accepted)
            except Exception:
                logger.exception("Call accepted listener failed")

    def _is_current(self, attempt: int) -> bool:
        return self._attempt == attempt and self._state == CallState.INVITING

    def _transition(self, new_state: CallState) -> None:
        if new_state == self._state:
            return
        if new_state not in _TRANSITIONS[self._state]:
            raise CallStateError(f"Illegal call transition {self._state} -> {new_state}")
        logger.info("Call state %s -> %s", self._state, new_state)
        self._state = new_state
        if self._call is not None and new_state in _STATUS_FOR_STATE:
            self._call = replace(self._call, status=_STATUS_FOR_STATE[new_state])
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Call state listener failed")

    def _reset(self) -> None:
        self._cancel_timer()
        self._call = None
        self._transition(CallState.IDLE)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _send(self, call: CallSession, signal_type: CallSignalType) -> None:
        try:
            await self._channel.send_call_signal(
                call.peer_id, call.session_id, signal_type, appointment_id=call.appointment_id,
            )
        except AppError as exc:
            logger.warning("Failed to send %s for %s: %s", signal_type, call.session_id, exc.detail)

    async def _end_session(self, session_id: str, *, reason: str) -> None:
        try:
            await self._api.end_video_session(session_id, reason=reason)
        except AppError as exc:
            logger.warning("Failed to end video session %s: %s", session_id, exc.detail)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro, name="call-signaling")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._cancel_timer()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _add(listeners: list[Any], listener: Any) -> Callable[[], None]:
    listeners.append(listener)

    def _remove() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return _remove
