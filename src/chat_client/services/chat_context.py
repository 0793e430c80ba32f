"""Per-session wiring of channel, store, presence, typing and calls."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Coroutine

from chat_client.application.dto.session import Session
from chat_client.application.exceptions import AppError
from chat_client.application.ports.api import ChatApi, VideoApi
from chat_client.application.ports.channel import ChannelTransport
from chat_client.application.ports.clock import Clock, LoopScheduler, Scheduler, SystemClock
from chat_client.application.ports.notifier import LoggingNotifier, Notifier
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.entities.conversation import Conversation
from chat_client.domain.entities.message import Message
from chat_client.domain.events.presence_changed import PresenceChanged
from chat_client.domain.events.proposal_updated import ProposalUpdated
from chat_client.domain.events.typing_started import TypingStarted
from chat_client.infrastructure.auth.session_token import SessionTokenDecoder
from chat_client.infrastructure.http.api_client import AiohttpChatApi
from chat_client.infrastructure.ws.transport import AiohttpChannelTransport
from chat_client.services.call_signaling import CallSignaling
from chat_client.services.conversation_store import ConversationStore
from chat_client.services.message_channel import MessageChannel
from chat_client.services.presence_tracker import PresenceTracker
from chat_client.services.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)


class ChatContext:
    """Owns exactly one of each realtime component for an authenticated user.

    Nothing is shared between contexts; two sessions in one process get two
    independent graphs.
    """

    def __init__(
        self,
        session: Session,
        transport: ChannelTransport,
        api: ChatApi,
        video_api: VideoApi,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        config: Settings | None = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ) -> None:
        cfg = config or default_settings
        self.session = session
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or LoopScheduler()
        self._resync_gap = cfg.RESYNC_GAP_SECONDS
        self._closers: list[Callable[[], Any]] = []
        self._resync_task: asyncio.Task[None] | None = None
        self._started = False

        self.channel = MessageChannel(
            transport,
            session,
            clock=self._clock,
            sleep=sleep,
            base_delay=cfg.RECONNECT_BASE_DELAY,
            max_delay=cfg.RECONNECT_MAX_DELAY,
            ping_interval=cfg.PING_INTERVAL,
            outbox_limit=cfg.OUTBOX_LIMIT,
            typing_throttle=cfg.TYPING_THROTTLE_SECONDS,
        )
        self.store = ConversationStore(
            api,
            session,
            notifier=notifier or LoggingNotifier(),
            clock=self._clock,
            history_limit=cfg.MESSAGE_HISTORY_LIMIT,
            max_upload_bytes=cfg.MAX_UPLOAD_BYTES,
        )
        self.presence = PresenceTracker(
            self._clock, recent_window=timedelta(seconds=cfg.PRESENCE_RECENT_WINDOW),
        )
        self.typing = TypingCoordinator(self._scheduler, quiet_period=cfg.TYPING_QUIET_PERIOD)
        self.calls = CallSignaling(
            self.channel,
            video_api,
            self.presence,
            session,
            self._scheduler,
            decline_display=cfg.CALL_DECLINE_DISPLAY,
            ring_timeout=cfg.CALL_RING_TIMEOUT,
        )

    @classmethod
    def create(cls, token: str, config: Settings | None = None, **kwargs: Any) -> ChatContext:
        """Build the production graph (aiohttp transport and REST client)."""
        cfg = config or default_settings
        session = SessionTokenDecoder(
            cfg.SESSION_TOKEN_SECRET, cfg.SESSION_TOKEN_ALGORITHM,
        ).decode(token)
        api = AiohttpChatApi(
            cfg.CHAT_API_URL,
            token,
            timeout=cfg.CHAT_HTTP_TIMEOUT,
            max_upload_bytes=cfg.MAX_UPLOAD_BYTES,
        )
        transport = AiohttpChannelTransport(cfg.CHAT_WS_URL, connect_timeout=cfg.CHAT_HTTP_TIMEOUT)
        context = cls(session, transport, api, api, config=cfg, **kwargs)
        context._closers.append(api.close)
        return context

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        unsubscribers = [
            self.channel.on_message(self._on_message),
            self.channel.on_typing(self._on_typing),
            self.channel.on_presence(self._on_presence),
            self.channel.on_call_signal(self.calls.handle_signal),
            self.channel.on_proposal_update(self._on_proposal_update),
            self.channel.on_reconnect(self._on_reconnect),
        ]
        try:
            await self.channel.connect(self.session.token)
        except AppError:
            for unsubscribe in unsubscribers:
                unsubscribe()
            raise
        self._closers.extend(unsubscribers)
        self._started = True

        try:
            conversations = await self.store.load_conversations()
        except AppError as exc:
            logger.warning("Initial conversation load failed: %s", exc.detail)
            return
        self._seed_presence(conversations)
        logger.info("Chat context started for %s", self.session.user_id)

    async def stop(self) -> None:
        resync, self._resync_task = self._resync_task, None
        if resync is not None:
            resync.cancel()
            await asyncio.gather(resync, return_exceptions=True)
        await self.calls.close()
        self.typing.close()
        await self.channel.close()
        await self.store.drain()
        closers, self._closers = self._closers, []
        for closer in closers:
            result = closer()
            if asyncio.iscoroutine(result):
                await result
        self._started = False
        logger.info("Chat context stopped for %s", self.session.user_id)

    # -- user actions --------------------------------------------------

    async def open_conversation(self, conversation_id: str) -> Conversation:
        previous = self.store.active_conversation_id
        if previous is not None and previous != conversation_id:
            self.channel.leave_conversation(previous)
            self.typing.close()
        await self.channel.join_conversation(conversation_id)
        conversation = await self.store.open_conversation(conversation_id)
        other = conversation.other_participant(self.session.user_id)
        self.presence.seed(other.id, other.last_online)
        return conversation

    def close_conversation(self) -> None:
        active = self.store.active_conversation_id
        if active is not None:
            self.channel.leave_conversation(active)
        self.typing.close()
        self.store.close_conversation()

    async def send_typing(self) -> bool:
        active = self.store.active_conversation_id
        if active is None:
            return False
        return await self.channel.send_typing(active)

    # -- channel events ------------------------------------------------

    def _on_message(self, message: Message) -> None:
        self.store.apply_incoming_message(message)
        self.typing.clear(message.sender_id)

    def _on_typing(self, event: TypingStarted) -> None:
        if event.user_id == self.session.user_id:
            return
        active = self.store.active_conversation_id
        if active is None:
            return
        if event.conversation_id is not None and event.conversation_id != active:
            return
        if event.conversation_id is None:
            conversation = self.store.active_conversation
            if conversation is None or event.user_id not in conversation.participant_ids:
                return
        self.typing.on_typing_event(event.user_id)

    def _on_presence(self, event: PresenceChanged) -> None:
        if event.online:
            self.presence.mark_online(event.user_id)
        else:
            self.presence.mark_offline(event.user_id, event.last_seen)

    def _on_proposal_update(self, event: ProposalUpdated) -> None:
        self.store.apply_proposal_update(event.conversation_id, event.proposal_id, event.status)

    def _on_reconnect(self, gap: float) -> None:
        if gap < self._resync_gap:
            logger.debug("Reconnected after %.1fs, no resync needed", gap)
            return
        if self._resync_task is not None and not self._resync_task.done():
            return
        logger.info("Reconnected after %.1fs, resyncing", gap)
        self._resync_task = asyncio.create_task(self.store.resync(), name="chat-context-resync")

    def _seed_presence(self, conversations: list[Conversation]) -> None:
        for conversation in conversations:
            other = conversation.other_participant(self.session.user_id)
            self.presence.seed(other.id, other.last_online)
