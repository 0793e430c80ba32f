from __future__ import annotations

from typing import Protocol

from chat_client.application.dto.upload import ImageUpload
from chat_client.domain.entities.conversation import Conversation
from chat_client.domain.entities.message import Message


class ChatApi(Protocol):
    async def list_conversations(self) -> list[Conversation]: ...

    async def get_conversation(
        self, conversation_id: str, *, limit: int = 100,
    ) -> tuple[Conversation, list[Message]]: ...

    async def mark_read(self, conversation_id: str) -> None: ...

    async def set_pinned(self, conversation_id: str, pinned: bool) -> None: ...

    async def archive_conversation(self, conversation_id: str) -> None: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...

    async def send_message(
        self,
        conversation_id: str,
        recipient_id: str,
        text: str,
        image_url: str | None = None,
    ) -> Message: ...

    async def upload_image(self, upload: ImageUpload) -> str:
        """Upload an image and return its public URL."""
        ...


class VideoApi(Protocol):
    async def create_video_session(
        self, peer_id: str, *, appointment_id: str | None = None,
    ) -> str:
        """Provision a call session and return its server-issued id."""
        ...

    async def end_video_session(self, session_id: str, *, reason: str = "completed") -> None: ...
