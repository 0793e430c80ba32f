from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.entities.participant import Participant
from chat_client.domain.value_objects.enums import MessageType


@dataclass(frozen=True, slots=True)
class LastMessage:
    id: str
    text: str
    sender_id: str
    created_at: datetime
    type: MessageType = MessageType.TEXT


@dataclass(frozen=True, slots=True)
class Conversation:
    id: str
    user1: Participant
    user2: Participant
    last_message: LastMessage | None = None
    unread_count: int = 0
    is_pinned: bool = False
    is_archived: bool = False
    updated_at: datetime | None = None
    professional_id: str | None = None

    def __post_init__(self) -> None:
        if self.user1.id == self.user2.id:
            raise ValueError("A conversation needs two distinct participants")
        if self.unread_count < 0:
            raise ValueError("unread_count must be non-negative")

    @property
    def participant_ids(self) -> tuple[str, str]:
        return self.user1.id, self.user2.id

    @property
    def last_activity_at(self) -> datetime | None:
        if self.last_message is not None:
            return self.last_message.created_at
        return self.updated_at

    def other_participant(self, user_id: str) -> Participant:
        """Return the participant that is not ``user_id``."""
        return self.user2 if self.user1.id == user_id else self.user1
