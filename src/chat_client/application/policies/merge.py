"""Pure reducers for the conversation store.

Every function takes the current state and returns a new value; none of them
touch the network, timers or the store instance, so the idempotent-merge rules
can be tested in isolation.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from chat_client.domain.entities.conversation import Conversation, LastMessage
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import ProposalStatus

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def merge_message(messages: Sequence[Message], incoming: Message) -> list[Message]:
    """Insert ``incoming`` in creation order unless its id is already present."""
    result = list(messages)
    if any(m.id == incoming.id for m in result):
        return result
    idx = len(result)
    while idx > 0 and result[idx - 1].created_at > incoming.created_at:
        idx -= 1
    result.insert(idx, incoming)
    return result


def merge_history(messages: Sequence[Message], history: Iterable[Message]) -> list[Message]:
    result = list(messages)
    for message in history:
        result = merge_message(result, message)
    return result


def reconcile_sent(
    messages: Sequence[Message],
    placeholder_id: str,
    confirmed: Message,
) -> list[Message]:
    """Swap an optimistic placeholder for the server-confirmed message.

    If the channel echo of ``confirmed`` already landed, the placeholder is
    simply dropped, so both arrival orders end with one entry.
    """
    without = [m for m in messages if m.id != placeholder_id]
    return merge_message(without, confirmed)


def absorb_echo(
    messages: Sequence[Message],
    echo: Message,
    *,
    own_user_id: str,
) -> list[Message]:
    """Merge the channel echo of our own send, replacing its placeholder.

    The oldest pending entry with the same conversation, sender and text is
    taken to be the placeholder. An echo whose id is already present changes
    nothing.
    """
    result = list(messages)
    if echo.sender_id != own_user_id or any(m.id == echo.id for m in result):
        return merge_message(result, echo)
    for m in result:
        if (
            m.pending
            and m.conversation_id == echo.conversation_id
            and m.sender_id == echo.sender_id
            and (m.text or "") == (echo.text or "")
        ):
            result.remove(m)
            break
    return merge_message(result, echo)


def drop_message(messages: Sequence[Message], message_id: str) -> list[Message]:
    return [m for m in messages if m.id != message_id]


def apply_proposal_status(
    messages: Sequence[Message],
    proposal_id: str,
    status: ProposalStatus,
) -> list[Message]:
    return [
        replace(m, proposal_status=status) if m.proposal_id == proposal_id else m
        for m in messages
    ]


def snapshot_of(message: Message) -> LastMessage:
    return LastMessage(
        id=message.id,
        text=message.text,
        sender_id=message.sender_id,
        created_at=message.created_at,
        type=message.type,
    )


def apply_message_to_conversation(
    conversation: Conversation,
    message: Message,
    *,
    active: bool,
    own_user_id: str,
) -> Conversation:
    """Fold a delivered message into a conversation's list entry.

    Unread grows by one per new message unless the conversation is active or
    the message was sent by ``own_user_id``. Re-applying the current last
    message is a no-op.
    """
    last = conversation.last_message
    if last is not None and last.id == message.id:
        return conversation

    if last is None or message.created_at >= last.created_at:
        last = snapshot_of(message)

    unread = conversation.unread_count
    if not active and message.sender_id != own_user_id:
        unread += 1

    return replace(
        conversation,
        last_message=last,
        unread_count=unread,
        updated_at=last.created_at,
    )


def _activity(conversation: Conversation) -> datetime:
    return conversation.last_activity_at or _EPOCH


def sort_conversations(conversations: Iterable[Conversation]) -> list[Conversation]:
    """Pinned first, then most recent activity first, then by id."""
    ordered = sorted(conversations, key=lambda c: c.id)
    ordered.sort(key=_activity, reverse=True)
    ordered.sort(key=lambda c: not c.is_pinned)
    return ordered


def replace_conversation(
    conversations: Sequence[Conversation],
    updated: Conversation,
) -> list[Conversation]:
    return sort_conversations(updated if c.id == updated.id else c for c in conversations)


def remove_conversation(
    conversations: Sequence[Conversation],
    conversation_id: str,
) -> list[Conversation]:
    return [c for c in conversations if c.id != conversation_id]


def insert_conversation(
    conversations: Sequence[Conversation],
    conversation: Conversation,
) -> list[Conversation]:
    rest = remove_conversation(conversations, conversation.id)
    return sort_conversations([*rest, conversation])
