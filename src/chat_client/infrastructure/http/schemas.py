"""REST payload models (camelCase on the wire)."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_client.domain.value_objects.enums import MessageType
from chat_client.infrastructure.ws.protocol import MessagePayload


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ParticipantSchema(_Schema):
    id: str
    first_name: str | None = None
    last_name: str | None = None
    profile_image: str | None = None
    last_online: datetime | None = None
    is_professional: bool = False


class LastMessageSchema(_Schema):
    id: str
    text: str = ""
    created_at: datetime
    sender_id: str
    type: MessageType = MessageType.TEXT


class ConversationSchema(_Schema):
    id: str
    user1: ParticipantSchema
    user2: ParticipantSchema
    professional_id: str | None = None
    last_message: LastMessageSchema | None = None
    unread_count: int = Field(default=0, ge=0)
    updated_at: datetime | None = None
    is_pinned: bool = False
    is_archived: bool = False


class ConversationWithMessagesSchema(ConversationSchema):
    messages: list[MessagePayload] = []
    has_more: bool = False


class SendMessageRequest(_Schema):
    conversation_id: str
    text: str
    recipient_id: str
    image_url: str | None = None


class UploadResponse(_Schema):
    url: str


class VideoSessionRef(_Schema):
    id: str


class VideoSessionResponse(_Schema):
    video_session: VideoSessionRef
