"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chat_client.application.dto.notice import Notice
from chat_client.application.dto.session import Session
from chat_client.application.dto.upload import ImageUpload
from chat_client.application.exceptions import AppError, ChannelConnectionError
from chat_client.domain.entities.conversation import Conversation, LastMessage
from chat_client.domain.entities.message import Message
from chat_client.domain.entities.participant import Participant
from chat_client.domain.value_objects.enums import CallSignalType

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

SELF_ID = "u1"
PEER_ID = "u2"


def make_session(*, user_id: str = SELF_ID, expires_at: datetime | None = None) -> Session:
    return Session(user_id=user_id, display_name="Alice Smith", token="tok-1", expires_at=expires_at)


def make_participant(
    participant_id: str,
    *,
    first_name: str | None = "Ann",
    last_name: str | None = None,
    last_online: datetime | None = None,
) -> Participant:
    return Participant(
        id=participant_id,
        first_name=first_name,
        last_name=last_name,
        last_online=last_online,
    )


def make_conversation(
    conversation_id: str = "c1",
    *,
    user1: str = SELF_ID,
    user2: str = PEER_ID,
    last_at: datetime | None = None,
    last_id: str = "m0",
    unread: int = 0,
    pinned: bool = False,
    archived: bool = False,
    peer_last_online: datetime | None = None,
) -> Conversation:
    last = None
    if last_at is not None:
        last = LastMessage(id=last_id, text="earlier", sender_id=user2, created_at=last_at)
    return Conversation(
        id=conversation_id,
        user1=make_participant(user1, first_name="Alice"),
        user2=make_participant(user2, first_name="Bob", last_online=peer_last_online),
        last_message=last,
        unread_count=unread,
        is_pinned=pinned,
        is_archived=archived,
        updated_at=last_at,
    )


def make_message(
    message_id: str,
    *,
    conversation_id: str = "c1",
    sender_id: str = PEER_ID,
    text: str = "hello",
    created_at: datetime | None = None,
    proposal_id: str | None = None,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        created_at=created_at or T0,
        text=text,
        proposal_id=proposal_id,
    )


def message_frame(message: Message) -> dict[str, Any]:
    return {
        "type": "newMessage",
        "conversationId": message.conversation_id,
        "message": {
            "id": message.id,
            "conversationId": message.conversation_id,
            "senderId": message.sender_id,
            "text": message.text,
            "createdAt": message.created_at.isoformat(),
        },
    }


async def wait_until(predicate: Callable[[], bool], *, rounds: int = 200) -> None:
    """Yield to the loop until ``predicate`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# -- time --------------------------------------------------------------


@dataclass
class _ManualTimer:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualClock:
    """Clock and Scheduler driven explicitly by ``advance``."""

    start: datetime = T0
    elapsed: float = 0.0
    timers: list[_ManualTimer] = field(default_factory=list)

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def monotonic(self) -> float:
        return self.elapsed

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(due=self.elapsed + delay, callback=callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.elapsed = max(self.elapsed, timer.due)
            timer.callback()
        self.elapsed = target

    @property
    def pending_timers(self) -> int:
        return sum(1 for t in self.timers if not t.cancelled)


@dataclass
class FakeSleep:
    """Records backoff delays; blocks on ``gate`` when one is set."""

    delays: list[float] = field(default_factory=list)
    gate: asyncio.Event | None = None

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)


# -- channel -----------------------------------------------------------


@dataclass
class FakeTransport:
    open_errors: list[ChannelConnectionError] = field(default_factory=list)
    sent: list[str] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)
    closed: int = 0
    is_open: bool = False
    _inbound: asyncio.Queue = field(default_factory=asyncio.Queue)

    async def open(self, token: str) -> None:
        self.tokens.append(token)
        if self.open_errors:
            raise self.open_errors.pop(0)
        self.is_open = True

    async def send_text(self, data: str) -> None:
        if not self.is_open:
            raise ChannelConnectionError("Not connected")
        self.sent.append(data)

    async def receive_text(self) -> str | None:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            self.is_open = False
            raise item
        if item is None:
            self.is_open = False
        return item

    async def close(self) -> None:
        self.closed += 1
        self.is_open = False

    def push(self, frame: dict[str, Any] | str) -> None:
        self._inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, error: Exception | None = None) -> None:
        self._inbound.put_nowait(error)

    @property
    def sent_frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    def actions(self) -> list[str]:
        return [frame["action"] for frame in self.sent_frames]


@dataclass
class FakeChannel:
    """Records call signals instead of putting them on a wire."""

    signals: list[tuple[str, str, CallSignalType]] = field(default_factory=list)
    gates: dict[CallSignalType, asyncio.Event] = field(default_factory=dict)

    async def send_call_signal(
        self,
        target_user_id: str,
        session_id: str,
        signal_type: CallSignalType,
        *,
        appointment_id: str | None = None,
    ) -> bool:
        gate = self.gates.get(signal_type)
        if gate is not None:
            await gate.wait()
        self.signals.append((target_user_id, session_id, signal_type))
        return True

    @property
    def types(self) -> list[CallSignalType]:
        return [s[2] for s in self.signals]


# -- REST --------------------------------------------------------------


@dataclass
class FakeChatApi:
    conversations: list[Conversation] = field(default_factory=list)
    histories: dict[str, list[Message]] = field(default_factory=dict)
    errors: dict[str, AppError] = field(default_factory=dict)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    list_gate: asyncio.Event | None = None
    send_gate: asyncio.Event | None = None
    next_message_id: str = "m-server"
    uploaded: list[ImageUpload] = field(default_factory=list)

    def _record(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def called(self, name: str) -> list[Any]:
        return [arg for n, arg in self.calls if n == name]

    async def list_conversations(self) -> list[Conversation]:
        self._record("list_conversations")
        if self.list_gate is not None:
            await self.list_gate.wait()
        return list(self.conversations)

    async def get_conversation(
        self, conversation_id: str, *, limit: int = 100,
    ) -> tuple[Conversation, list[Message]]:
        self._record("get_conversation", conversation_id)
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation, list(self.histories.get(conversation_id, []))[-limit:]
        raise AppError(f"Conversation {conversation_id} not found")

    async def mark_read(self, conversation_id: str) -> None:
        self._record("mark_read", conversation_id)

    async def set_pinned(self, conversation_id: str, pinned: bool) -> None:
        self._record("set_pinned", (conversation_id, pinned))

    async def archive_conversation(self, conversation_id: str) -> None:
        self._record("archive_conversation", conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        self._record("delete_conversation", conversation_id)

    async def send_message(
        self,
        conversation_id: str,
        recipient_id: str,
        text: str,
        image_url: str | None = None,
    ) -> Message:
        self._record("send_message", (conversation_id, recipient_id, text, image_url))
        if self.send_gate is not None:
            await self.send_gate.wait()
        return Message(
            id=self.next_message_id,
            conversation_id=conversation_id,
            sender_id=SELF_ID,
            created_at=T0 + timedelta(seconds=30),
            text=text,
            image_url=image_url,
        )

    async def upload_image(self, upload: ImageUpload) -> str:
        self._record("upload_image", upload.filename)
        self.uploaded.append(upload)
        return f"https://cdn.test/{upload.filename}"


@dataclass
class FakeVideoApi:
    session_id: str = "vs-1"
    session_ids: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    ended: list[tuple[str, str]] = field(default_factory=list)
    create_error: AppError | None = None
    create_gate: asyncio.Event | None = None
    create_gates: list[asyncio.Event] = field(default_factory=list)

    async def create_video_session(self, peer_id: str, *, appointment_id: str | None = None) -> str:
        self.created.append(peer_id)
        session_id = self.session_ids.pop(0) if self.session_ids else self.session_id
        gate = self.create_gates.pop(0) if self.create_gates else self.create_gate
        if gate is not None:
            await gate.wait()
        if self.create_error is not None:
            raise self.create_error
        return session_id

    async def end_video_session(self, session_id: str, *, reason: str = "completed") -> None:
        self.ended.append((session_id, reason))


@dataclass
class RecordingNotifier:
    notices: list[Notice] = field(default_factory=list)

    def notify(self, notice: Notice) -> None:
        self.notices.append(notice)


# -- fixtures ----------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def session() -> Session:
    return make_session()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
