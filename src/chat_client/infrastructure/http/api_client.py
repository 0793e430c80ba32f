"""aiohttp client for the chat REST collaborators."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from chat_client.application.dto.upload import ImageUpload
from chat_client.application.exceptions import (
    ApiError,
    AppError,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from chat_client.domain.entities.conversation import Conversation
from chat_client.domain.entities.message import Message
from chat_client.infrastructure.http.mappers import conversation_to_entity
from chat_client.infrastructure.http.schemas import (
    ConversationSchema,
    ConversationWithMessagesSchema,
    SendMessageRequest,
    UploadResponse,
    VideoSessionResponse,
)
from chat_client.infrastructure.ws.mappers import message_to_entity
from chat_client.infrastructure.ws.protocol import MessagePayload

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)

_STATUS_ERRORS: dict[int, type[AppError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_for_status(status: int, detail: str) -> AppError:
    exc_type = _STATUS_ERRORS.get(status)
    if exc_type is None:
        return ApiError(status, detail)
    return exc_type(detail)


async def _error_detail(resp: aiohttp.ClientResponse) -> str:
    try:
        body = await resp.json(content_type=None)
    except (ValueError, aiohttp.ClientError):
        return resp.reason or f"HTTP {resp.status}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


def _parse(model: type[S], data: Any) -> S:
    try:
        return model.model_validate(data)
    except SchemaError as exc:
        raise ApiError(200, f"Malformed {model.__name__} payload") from exc


class AiohttpChatApi:
    """Implements application.ports.api.ChatApi and VideoApi."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 15.0,
        max_upload_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_upload_bytes = max_upload_bytes

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        data: Any = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with self._client().request(
                method, url, params=params, json=json, data=data, headers=headers,
            ) as resp:
                if resp.status >= 400:
                    detail = await _error_detail(resp)
                    logger.warning("%s %s failed: %d %s", method, path, resp.status, detail)
                    raise error_for_status(resp.status, detail)
                if resp.status == 204:
                    return None
                text = await resp.text()
                if not text:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError as exc:
                    logger.warning("%s %s returned a non-JSON body", method, path)
                    raise ApiError(resp.status, "Malformed response body") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ApiError(0, str(exc) or type(exc).__name__) from exc

    # -- conversations -------------------------------------------------

    async def list_conversations(self) -> list[Conversation]:
        data = await self._request("GET", "/conversations")
        if not isinstance(data, list):
            return []
        return [conversation_to_entity(_parse(ConversationSchema, item)) for item in data]

    async def get_conversation(
        self, conversation_id: str, *, limit: int = 100,
    ) -> tuple[Conversation, list[Message]]:
        data = await self._request(
            "GET",
            f"/conversations/{conversation_id}",
            params={"messages": "true", "limit": str(limit)},
        )
        schema = _parse(ConversationWithMessagesSchema, data)
        messages = [message_to_entity(m) for m in schema.messages]
        return conversation_to_entity(schema), messages

    async def mark_read(self, conversation_id: str) -> None:
        await self._request("PATCH", f"/conversations/{conversation_id}")

    async def set_pinned(self, conversation_id: str, pinned: bool) -> None:
        await self._request(
            "PATCH", f"/conversations/{conversation_id}/pin", json={"isPinned": pinned},
        )

    async def archive_conversation(self, conversation_id: str) -> None:
        await self._request(
            "PATCH", f"/conversations/{conversation_id}/archive", json={"isArchived": True},
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    # -- messages ------------------------------------------------------

    async def send_message(
        self,
        conversation_id: str,
        recipient_id: str,
        text: str,
        image_url: str | None = None,
    ) -> Message:
        body = SendMessageRequest(
            conversation_id=conversation_id,
            text=text,
            recipient_id=recipient_id,
            image_url=image_url,
        )
        data = await self._request(
            "POST", "/messages", json=body.model_dump(by_alias=True, exclude_none=True),
        )
        return message_to_entity(_parse(MessagePayload, data))

    async def upload_image(self, upload: ImageUpload) -> str:
        upload.validate(self._max_upload_bytes)
        form = aiohttp.FormData()
        form.add_field(
            "file", upload.content, filename=upload.filename, content_type=upload.content_type,
        )
        data = await self._request("POST", "/messages/upload", data=form)
        return _parse(UploadResponse, data).url

    # -- video sessions ------------------------------------------------

    async def create_video_session(
        self, peer_id: str, *, appointment_id: str | None = None,
    ) -> str:
        payload: dict[str, str] = {"professionalId": peer_id}
        if appointment_id:
            payload["appointmentId"] = appointment_id
        data = await self._request("POST", "/video/create", json=payload)
        return _parse(VideoSessionResponse, data).video_session.id

    async def end_video_session(self, session_id: str, *, reason: str = "completed") -> None:
        await self._request("POST", f"/video/end/{session_id}", json={"reason": reason})
