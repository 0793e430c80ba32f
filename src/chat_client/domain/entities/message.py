from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.value_objects.enums import MessageType, ProposalStatus


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    created_at: datetime
    text: str = ""
    image_url: str | None = None
    is_audio: bool = False
    is_system: bool = False
    proposal_id: str | None = None
    proposal_status: ProposalStatus | None = None
    pending: bool = False

    @property
    def type(self) -> MessageType:
        if self.is_audio:
            return MessageType.AUDIO
        if self.image_url:
            return MessageType.IMAGE
        return MessageType.TEXT
