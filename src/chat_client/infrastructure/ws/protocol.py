"""WebSocket frame models.

Server frames are discriminated by ``type``, client frames by ``action``.
Keys are camelCase on the wire.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from chat_client.domain.value_objects.enums import CallSignalType, ProposalStatus


class _Frame(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class WsInbound(_Frame):
    """Server → Client."""


class MessagePayload(_Frame):
    id: str
    conversation_id: str
    sender_id: str
    text: str = ""
    image_url: str | None = None
    is_audio: bool = False
    is_system: bool = False
    proposal_id: str | None = None
    proposal_status: ProposalStatus | None = None
    created_at: datetime


class NewMessageFrame(WsInbound):
    type: Literal["newMessage"]
    conversation_id: str | None = None
    message: MessagePayload


class TypingFrame(WsInbound):
    type: Literal["typing"]
    user_id: str = Field(validation_alias=AliasChoices("userId", "senderId", "user_id"))
    conversation_id: str | None = None


class PresenceFrame(WsInbound):
    type: Literal["presence"]
    user_id: str
    online: bool
    last_online: datetime | None = None


class CallSignalFrame(WsInbound):
    type: Literal["video_invite", "video_accept", "video_decline", "video_end", "video_join"]
    sender_id: str
    session_id: str
    sender_name: str = ""
    appointment_id: str | None = None
    timestamp: datetime | None = None


class ProposalUpdateFrame(WsInbound):
    type: Literal["proposalUpdate"]
    conversation_id: str
    proposal_id: str
    status: ProposalStatus | None = None


class ErrorFrame(WsInbound):
    type: Literal["error"]
    error: str = ""


class ControlFrame(WsInbound):
    type: Literal[
        "pong",
        "heartbeatAck",
        "joined",
        "videoInviteSent",
        "notificationSent",
    ]


InboundFrame = Annotated[
    Union[
        NewMessageFrame,
        TypingFrame,
        PresenceFrame,
        CallSignalFrame,
        ProposalUpdateFrame,
        ErrorFrame,
        ControlFrame,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


def parse_inbound(raw: str | bytes) -> InboundFrame:
    """Parse one server frame; raises pydantic.ValidationError on bad input."""
    return _inbound_adapter.validate_json(raw)


class WsOutbound(_Frame):
    """Client → Server."""

    def dump(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class PingFrame(WsOutbound):
    action: Literal["ping"] = "ping"


class HeartbeatFrame(WsOutbound):
    """Marks the sender online server-side."""

    action: Literal["heartbeat"] = "heartbeat"
    user_id: str


class JoinFrame(WsOutbound):
    action: Literal["join"] = "join"
    conversation_id: str


class TypingNoticeFrame(WsOutbound):
    action: Literal["typing"] = "typing"
    conversation_id: str
    user_id: str


class CallSignalOutFrame(WsOutbound):
    action: Literal["videoInvite", "videoAccept", "videoDecline", "videoEnd", "videoJoin"]
    target_user_id: str
    session_id: str
    user_id: str
    sender_name: str = ""
    appointment_id: str | None = None


_SIGNAL_ACTIONS: dict[CallSignalType, str] = {
    CallSignalType.VIDEO_INVITE: "videoInvite",
    CallSignalType.VIDEO_ACCEPT: "videoAccept",
    CallSignalType.VIDEO_DECLINE: "videoDecline",
    CallSignalType.VIDEO_END: "videoEnd",
    CallSignalType.VIDEO_JOIN: "videoJoin",
}


def call_signal_frame(
    signal_type: CallSignalType,
    *,
    target_user_id: str,
    session_id: str,
    user_id: str,
    sender_name: str = "",
    appointment_id: str | None = None,
) -> CallSignalOutFrame:
    return CallSignalOutFrame(
        action=_SIGNAL_ACTIONS[signal_type],
        target_user_id=target_user_id,
        session_id=session_id,
        user_id=user_id,
        sender_name=sender_name,
        appointment_id=appointment_id,
    )
