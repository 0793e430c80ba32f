from __future__ import annotations

from chat_client.domain.entities.message import Message
from chat_client.domain.events.call_signal import CallSignal
from chat_client.domain.events.presence_changed import PresenceChanged
from chat_client.domain.events.proposal_updated import ProposalUpdated
from chat_client.domain.events.typing_started import TypingStarted
from chat_client.domain.value_objects.enums import CallSignalType
from chat_client.domain.value_objects.timestamps import ensure_utc
from chat_client.infrastructure.ws.protocol import (
    CallSignalFrame,
    MessagePayload,
    PresenceFrame,
    ProposalUpdateFrame,
    TypingFrame,
)


def message_to_entity(payload: MessagePayload) -> Message:
    return Message(
        id=payload.id,
        conversation_id=payload.conversation_id,
        sender_id=payload.sender_id,
        created_at=ensure_utc(payload.created_at),
        text=payload.text,
        image_url=payload.image_url,
        is_audio=payload.is_audio,
        is_system=payload.is_system,
        proposal_id=payload.proposal_id,
        proposal_status=payload.proposal_status,
    )


def typing_to_event(frame: TypingFrame) -> TypingStarted:
    return TypingStarted(user_id=frame.user_id, conversation_id=frame.conversation_id)


def presence_to_event(frame: PresenceFrame) -> PresenceChanged:
    return PresenceChanged(
        user_id=frame.user_id,
        online=frame.online,
        last_seen=ensure_utc(frame.last_online) if frame.last_online else None,
    )


def call_signal_to_event(frame: CallSignalFrame) -> CallSignal:
    return CallSignal(
        type=CallSignalType(frame.type),
        sender_id=frame.sender_id,
        session_id=frame.session_id,
        sender_name=frame.sender_name,
        appointment_id=frame.appointment_id,
        sent_at=ensure_utc(frame.timestamp) if frame.timestamp else None,
    )


def proposal_to_event(frame: ProposalUpdateFrame) -> ProposalUpdated:
    return ProposalUpdated(
        conversation_id=frame.conversation_id,
        proposal_id=frame.proposal_id,
        status=frame.status,
    )
