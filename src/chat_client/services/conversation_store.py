"""Client-side cache of the conversation list and the active thread.

Local state changes optimistically; REST results and channel deliveries are
merged back by message id through the reducers in
``application.policies.merge``, so an optimistic send and its channel echo end
up as one entry whatever order they arrive in.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Callable, Coroutine

from chat_client.application.dto.notice import Notice
from chat_client.application.dto.session import Session
from chat_client.application.dto.upload import ImageUpload
from chat_client.application.exceptions import (
    AppError,
    NotFoundError,
    SendFailure,
    ValidationError,
)
from chat_client.application.policies.merge import (
    absorb_echo,
    apply_message_to_conversation,
    apply_proposal_status,
    drop_message,
    insert_conversation,
    merge_history,
    merge_message,
    reconcile_sent,
    remove_conversation,
    replace_conversation,
    sort_conversations,
)
from chat_client.application.ports.api import ChatApi
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.notifier import LoggingNotifier, Notifier
from chat_client.domain.entities.conversation import Conversation
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import NoticeLevel, ProposalStatus
from chat_client.domain.value_objects.ids import PENDING_ID_PREFIX, is_pending_id

logger = logging.getLogger(__name__)

StoreListener = Callable[[], None]


class ConversationStore:
    def __init__(
        self,
        api: ChatApi,
        session: Session,
        *,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        history_limit: int = 100,
        max_upload_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self._api = api
        self._session = session
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or SystemClock()
        self._history_limit = history_limit
        self._max_upload_bytes = max_upload_bytes

        self._conversations: list[Conversation] = []
        self._active_id: str | None = None
        self._active: Conversation | None = None
        self._messages: list[Message] = []
        self._listeners: list[StoreListener] = []
        self._tasks: set[asyncio.Task[None]] = set()

        self.loading = False
        self.is_sending = False
        self.needs_refresh = False

    # -- read side -----------------------------------------------------

    @property
    def conversations(self) -> list[Conversation]:
        return list(self._conversations)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    @property
    def active_conversation(self) -> Conversation | None:
        if self._active_id is None:
            return None
        return self.get(self._active_id) or self._active

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def unread_total(self) -> int:
        return sum(c.unread_count for c in self._conversations)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store listener failed")

    # -- loading -------------------------------------------------------

    async def load_conversations(self) -> list[Conversation]:
        self.loading = True
        self._changed()
        try:
            fetched = await self._api.list_conversations()
        finally:
            self.loading = False

        visible = [c for c in fetched if not c.is_archived]
        if self._active_id is not None:
            visible = [replace(c, unread_count=0) if c.id == self._active_id else c for c in visible]
        self._conversations = sort_conversations(visible)
        self.needs_refresh = False
        logger.info("Loaded %d conversations", len(self._conversations))
        self._changed()
        return self.conversations

    async def open_conversation(self, conversation_id: str) -> Conversation:
        """Make a conversation active and fetch its history.

        Unread drops to zero as soon as the conversation becomes active; the
        server-side read marker is updated in the background.
        """
        self._active_id = conversation_id
        self._messages = []
        existing = self.get(conversation_id)
        if existing is not None and existing.unread_count:
            self._conversations = replace_conversation(
                self._conversations, replace(existing, unread_count=0),
            )
        self.loading = True
        self._changed()

        try:
            conversation, history = await self._api.get_conversation(
                conversation_id, limit=self._history_limit,
            )
        finally:
            self.loading = False

        if self._active_id != conversation_id:
            # another conversation was opened while this one loaded
            return conversation

        conversation = replace(conversation, unread_count=0)
        self._active = conversation
        if self.get(conversation_id) is not None:
            self._conversations = replace_conversation(self._conversations, conversation)
        self._messages = merge_history(self._messages, history)
        self._spawn(self._mark_read(conversation_id), name=f"mark-read-{conversation_id}")
        self._changed()
        return conversation

    def close_conversation(self) -> None:
        self._active_id = None
        self._active = None
        self._messages = []
        self._changed()

    async def resync(self) -> None:
        """Re-fetch authoritative state after a channel gap; pending sends survive."""
        logger.info("Resyncing conversations after reconnect")
        try:
            await self.load_conversations()
            active_id = self._active_id
            if active_id is None:
                return
            _, history = await self._api.get_conversation(active_id, limit=self._history_limit)
        except AppError as exc:
            logger.warning("Resync failed: %s", exc.detail)
            return
        if self._active_id == active_id:
            self._messages = merge_history(self._messages, history)
            self._changed()

    async def _mark_read(self, conversation_id: str) -> None:
        try:
            await self._api.mark_read(conversation_id)
        except AppError as exc:
            logger.warning("Mark read failed for %s: %s", conversation_id, exc.detail)

    # -- channel deliveries --------------------------------------------

    def apply_incoming_message(self, message: Message) -> bool:
        """Merge a channel-delivered message. Returns False if nothing changed."""
        changed = False
        if message.conversation_id == self._active_id:
            merged = absorb_echo(self._messages, message, own_user_id=self._session.user_id)
            if merged != self._messages:
                self._messages = merged
                changed = True

        conversation = self.get(message.conversation_id)
        if conversation is None:
            if message.conversation_id != self._active_id:
                logger.info(
                    "Message %s for unknown conversation %s, list refresh needed",
                    message.id, message.conversation_id,
                )
                self.needs_refresh = True
                self._changed()
            elif changed:
                self._changed()
            return changed

        updated = apply_message_to_conversation(
            conversation,
            message,
            active=message.conversation_id == self._active_id,
            own_user_id=self._session.user_id,
        )
        if updated != conversation:
            self._conversations = replace_conversation(self._conversations, updated)
            changed = True

        if changed:
            self._changed()
        return changed

    def apply_proposal_update(
        self, conversation_id: str, proposal_id: str, status: ProposalStatus | None,
    ) -> None:
        if status is None or conversation_id != self._active_id:
            return
        self._messages = apply_proposal_status(self._messages, proposal_id, status)
        self._changed()

    # -- sending -------------------------------------------------------

    async def send_message(
        self,
        text: str | None = None,
        image: ImageUpload | None = None,
    ) -> Message:
        """Send into the active conversation.

        A pending placeholder is shown until the REST call returns, then
        replaced by the server message. On failure the placeholder is removed,
        an error notice is emitted and SendFailure is raised.
        """
        body = (text or "").strip()
        if not body and image is None:
            raise ValidationError("Please enter a message or select an image")
        conversation = self.active_conversation
        if conversation is None:
            raise NotFoundError("No active conversation")
        if image is not None:
            image.validate(self._max_upload_bytes)

        recipient = conversation.other_participant(self._session.user_id)
        placeholder = Message(
            id=f"{PENDING_ID_PREFIX}{uuid.uuid4().hex}",
            conversation_id=conversation.id,
            sender_id=self._session.user_id,
            created_at=self._clock.now(),
            text=body,
            pending=True,
        )
        self._messages = merge_message(self._messages, placeholder)
        self.is_sending = True
        self._changed()

        try:
            image_url = await self._api.upload_image(image) if image is not None else None
            sent = await self._api.send_message(conversation.id, recipient.id, body, image_url)
        except AppError as exc:
            self._messages = drop_message(self._messages, placeholder.id)
            self.is_sending = False
            self._notifier.notify(Notice(NoticeLevel.ERROR, exc.detail or "Failed to send message"))
            self._changed()
            raise SendFailure(exc.detail or "Failed to send message") from exc

        self.is_sending = False
        if self._active_id == conversation.id:
            self._messages = reconcile_sent(self._messages, placeholder.id, sent)
        current = self.get(conversation.id)
        if current is not None:
            self._conversations = replace_conversation(
                self._conversations,
                apply_message_to_conversation(
                    current, sent, active=True, own_user_id=self._session.user_id,
                ),
            )
        self._changed()
        return sent

    @property
    def pending_messages(self) -> list[Message]:
        return [m for m in self._messages if is_pending_id(m.id)]

    # -- list mutations ------------------------------------------------

    def pin(self, conversation_id: str) -> None:
        """Toggle the pinned flag locally and persist it in the background."""
        conversation = self._require(conversation_id)
        pinned = not conversation.is_pinned
        self._conversations = replace_conversation(
            self._conversations, replace(conversation, is_pinned=pinned),
        )
        self._changed()
        self._spawn(
            self._persist(
                lambda: self._api.set_pinned(conversation_id, pinned),
                conversation,
                "Failed to update pin",
            ),
            name=f"pin-{conversation_id}",
        )

    def archive(self, conversation_id: str) -> None:
        conversation = self._require(conversation_id)
        self._conversations = remove_conversation(self._conversations, conversation_id)
        self._changed()
        self._spawn(
            self._persist(
                lambda: self._api.archive_conversation(conversation_id),
                conversation,
                "Failed to archive conversation",
            ),
            name=f"archive-{conversation_id}",
        )

    def delete(self, conversation_id: str) -> None:
        conversation = self._require(conversation_id)
        self._conversations = remove_conversation(self._conversations, conversation_id)
        if self._active_id == conversation_id:
            self.close_conversation()
        self._changed()
        self._spawn(
            self._persist(
                lambda: self._api.delete_conversation(conversation_id),
                conversation,
                "Failed to delete conversation",
            ),
            name=f"delete-{conversation_id}",
        )

    def restore(self, conversation: Conversation) -> None:
        """Put a conversation snapshot back into the list (undo)."""
        self._conversations = insert_conversation(self._conversations, conversation)
        self._changed()

    async def _persist(
        self,
        call: Callable[[], Awaitable[None]],
        previous: Conversation,
        failure_text: str,
    ) -> None:
        # no automatic rollback: the notice carries an explicit undo
        try:
            await call()
        except AppError as exc:
            logger.warning("%s %s: %s", failure_text, previous.id, exc.detail)
            self._notifier.notify(
                Notice(NoticeLevel.ERROR, failure_text, undo=lambda: self.restore(previous)),
            )

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    # -- background tasks ----------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight background REST calls."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

