from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from chat_client.application.dto.upload import ImageUpload
from chat_client.application.exceptions import (
    ApiError,
    NotFoundError,
    SendFailure,
    UploadError,
    ValidationError,
)
from chat_client.domain.value_objects.enums import NoticeLevel, ProposalStatus
from chat_client.services.conversation_store import ConversationStore
from tests.conftest import (
    PEER_ID,
    SELF_ID,
    T0,
    FakeChatApi,
    make_conversation,
    make_message,
    wait_until,
)


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi(
        conversations=[
            make_conversation("c1", last_at=T0 - timedelta(minutes=10), unread=2),
            make_conversation("c2", user2="u3", last_at=T0 - timedelta(minutes=1)),
            make_conversation("c3", user2="u4", last_at=T0, archived=True),
        ],
        histories={"c1": [make_message("m1", created_at=T0 - timedelta(minutes=10))]},
    )


@pytest.fixture
def store(api, session, notifier, clock) -> ConversationStore:
    return ConversationStore(api, session, notifier=notifier, clock=clock)


@pytest.mark.asyncio
async def test_load_filters_archived_and_sorts(store):
    conversations = await store.load_conversations()

    assert [c.id for c in conversations] == ["c2", "c1"]
    assert store.unread_total() == 2


@pytest.mark.asyncio
async def test_open_resets_unread_and_marks_read(store, api):
    await store.load_conversations()

    await store.open_conversation("c1")
    await store.drain()

    assert store.get("c1").unread_count == 0
    assert [m.id for m in store.messages] == ["m1"]
    assert api.called("mark_read") == ["c1"]


@pytest.mark.asyncio
async def test_incoming_message_for_inactive_conversation_counts_once(store):
    await store.load_conversations()
    msg = make_message("m7", conversation_id="c2", sender_id="u3", created_at=T0)

    assert store.apply_incoming_message(msg) is True
    assert store.apply_incoming_message(msg) is False

    assert store.get("c2").unread_count == 1
    assert store.get("c2").last_message.id == "m7"


@pytest.mark.asyncio
async def test_incoming_message_for_active_conversation_does_not_count(store):
    await store.load_conversations()
    await store.open_conversation("c1")

    store.apply_incoming_message(make_message("m2", created_at=T0))

    assert store.get("c1").unread_count == 0
    assert [m.id for m in store.messages] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_unknown_conversation_flags_refresh(store):
    await store.load_conversations()

    store.apply_incoming_message(make_message("m8", conversation_id="c-new"))

    assert store.needs_refresh is True
    assert store.get("c-new") is None


@pytest.mark.asyncio
async def test_own_message_from_other_device_does_not_count(store):
    await store.load_conversations()

    store.apply_incoming_message(make_message("m9", conversation_id="c2", sender_id=SELF_ID))

    assert store.get("c2").unread_count == 0


@pytest.mark.asyncio
async def test_send_reconciles_placeholder(store, api):
    await store.load_conversations()
    await store.open_conversation("c1")

    sent = await store.send_message("  hello  ")

    assert sent.id == "m-server"
    assert api.called("send_message") == [("c1", PEER_ID, "hello", None)]
    assert [m.id for m in store.messages] == ["m1", "m-server"]
    assert store.pending_messages == []
    assert store.get("c1").last_message.id == "m-server"
    assert store.is_sending is False


@pytest.mark.asyncio
async def test_echo_before_rest_response_leaves_single_entry(store, api):
    api.send_gate = asyncio.Event()
    await store.load_conversations()
    await store.open_conversation("c1")

    task = asyncio.create_task(store.send_message("hello"))
    await wait_until(lambda: len(store.pending_messages) == 1)
    echo = make_message("m-server", sender_id=SELF_ID, created_at=T0 + timedelta(seconds=30))
    store.apply_incoming_message(echo)

    assert [(m.id, m.text) for m in store.messages] == [("m1", "hello"), ("m-server", "hello")]
    assert store.pending_messages == []
    assert store.is_sending is True

    api.send_gate.set()
    await task

    ids = [m.id for m in store.messages]
    assert ids.count("m-server") == 1
    assert store.pending_messages == []


@pytest.mark.asyncio
async def test_send_failure_removes_placeholder_and_notifies(store, api, notifier):
    api.errors["send_message"] = ApiError(500, "Failed to send message")
    await store.load_conversations()
    await store.open_conversation("c1")

    with pytest.raises(SendFailure):
        await store.send_message("hello")

    assert [m.id for m in store.messages] == ["m1"]
    assert notifier.notices[-1].level == NoticeLevel.ERROR
    assert store.is_sending is False


@pytest.mark.asyncio
async def test_send_requires_text_or_image(store, api):
    await store.load_conversations()
    await store.open_conversation("c1")

    with pytest.raises(ValidationError):
        await store.send_message("   ")

    assert api.called("send_message") == []


@pytest.mark.asyncio
async def test_send_without_active_conversation(store):
    with pytest.raises(NotFoundError):
        await store.send_message("hello")


@pytest.mark.asyncio
async def test_oversized_image_rejected_before_network(session, notifier, clock, api):
    store = ConversationStore(api, session, notifier=notifier, clock=clock, max_upload_bytes=10)
    await store.load_conversations()
    await store.open_conversation("c1")
    image = ImageUpload("big.png", b"x" * 11, "image/png")

    with pytest.raises(UploadError):
        await store.send_message(image=image)

    assert api.called("upload_image") == []
    assert store.pending_messages == []


@pytest.mark.asyncio
async def test_send_image_uploads_first(store, api):
    await store.load_conversations()
    await store.open_conversation("c1")

    await store.send_message(image=ImageUpload("cat.png", b"\x89PNG", "image/png"))

    assert api.called("upload_image") == ["cat.png"]
    assert api.called("send_message") == [("c1", PEER_ID, "", "https://cdn.test/cat.png")]


@pytest.mark.asyncio
async def test_pin_is_optimistic(store, api):
    await store.load_conversations()

    store.pin("c1")

    assert store.conversations[0].id == "c1"
    assert store.get("c1").is_pinned is True
    await store.drain()
    assert api.called("set_pinned") == [("c1", True)]


@pytest.mark.asyncio
async def test_archive_failure_offers_undo(store, api, notifier):
    api.errors["archive_conversation"] = ApiError(503, "unavailable")
    await store.load_conversations()

    store.archive("c1")
    assert store.get("c1") is None
    await store.drain()

    notice = notifier.notices[-1]
    assert notice.level == NoticeLevel.ERROR
    assert store.get("c1") is None
    notice.undo()
    assert store.get("c1") is not None


@pytest.mark.asyncio
async def test_delete_active_conversation_closes_it(store, api):
    await store.load_conversations()
    await store.open_conversation("c1")

    store.delete("c1")
    await store.drain()

    assert store.active_conversation_id is None
    assert store.messages == []
    assert api.called("delete_conversation") == ["c1"]


@pytest.mark.asyncio
async def test_mutating_unknown_conversation_raises(store):
    with pytest.raises(NotFoundError):
        store.pin("nope")


@pytest.mark.asyncio
async def test_proposal_update_changes_status(store, api):
    api.histories["c1"] = [make_message("m1", proposal_id="p1")]
    await store.load_conversations()
    await store.open_conversation("c1")

    store.apply_proposal_update("c1", "p1", ProposalStatus.ACCEPTED)

    assert store.messages[0].proposal_status == ProposalStatus.ACCEPTED


@pytest.mark.asyncio
async def test_resync_keeps_pending_and_merges_history(store, api):
    api.send_gate = asyncio.Event()
    await store.load_conversations()
    await store.open_conversation("c1")
    task = asyncio.create_task(store.send_message("draft"))
    await wait_until(lambda: len(store.pending_messages) == 1)

    api.histories["c1"].append(make_message("m2", created_at=T0 - timedelta(minutes=5)))
    await store.resync()

    assert [m.id for m in store.messages if not m.pending] == ["m1", "m2"]
    assert len(store.pending_messages) == 1
    api.send_gate.set()
    await task


@pytest.mark.asyncio
async def test_listeners_notified_on_change(store):
    seen: list[int] = []
    unsubscribe = store.subscribe(lambda: seen.append(len(store.conversations)))

    await store.load_conversations()
    assert seen[-1] == 2
    count = len(seen)

    unsubscribe()
    store.apply_incoming_message(make_message("m5", conversation_id="c2", sender_id="u3"))

    assert len(seen) == count
