from __future__ import annotations

from chat_client.domain.entities.conversation import Conversation, LastMessage
from chat_client.domain.entities.participant import Participant
from chat_client.domain.value_objects.timestamps import ensure_utc
from chat_client.infrastructure.http.schemas import (
    ConversationSchema,
    LastMessageSchema,
    ParticipantSchema,
)


def participant_to_entity(schema: ParticipantSchema) -> Participant:
    return Participant(
        id=schema.id,
        first_name=schema.first_name,
        last_name=schema.last_name,
        profile_image=schema.profile_image,
        last_online=ensure_utc(schema.last_online) if schema.last_online else None,
        is_professional=schema.is_professional,
    )


def last_message_to_entity(schema: LastMessageSchema) -> LastMessage:
    return LastMessage(
        id=schema.id,
        text=schema.text,
        sender_id=schema.sender_id,
        created_at=ensure_utc(schema.created_at),
        type=schema.type,
    )


def conversation_to_entity(schema: ConversationSchema) -> Conversation:
    return Conversation(
        id=schema.id,
        user1=participant_to_entity(schema.user1),
        user2=participant_to_entity(schema.user2),
        last_message=last_message_to_entity(schema.last_message) if schema.last_message else None,
        unread_count=schema.unread_count,
        is_pinned=schema.is_pinned,
        is_archived=schema.is_archived,
        updated_at=ensure_utc(schema.updated_at) if schema.updated_at else None,
        professional_id=schema.professional_id,
    )
