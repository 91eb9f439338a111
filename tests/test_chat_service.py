"""Tests for sending, history, read receipts and published change events."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from campus_chat.errors import ConversationNotFound, InvalidCursor, MessageValidationError, NotParticipant
from campus_chat.repositories.message_repository import MessageRepository
from campus_chat.schemas.events import MessageInserted, MessageUpdated, PresenceSynced, conversation_channel, parse_event


@pytest_asyncio.fixture
async def conversation(service):
    return await service.claim_item("item-backpack", "user-alice")


async def _collect(bus, channel):
    received = []

    async def on_message(raw):
        received.append(parse_event(raw))

    sub = await bus.subscribe(channel, on_message)
    return sub, received


async def _drain(sub):
    await sub.cancel()
    await sub.run()


@pytest.mark.asyncio
async def test_send_trims_and_stores_message(service, db, conversation):
    message = await service.send_message(conversation.id, "user-alice", "  Is this my backpack?  ")

    assert message.content == "Is this my backpack?"
    assert message.read is False
    assert message.read_at is None
    assert await db["messages"].count_documents({"conversation_id": conversation.id}) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
async def test_blank_content_is_rejected(service, db, conversation, content):
    with pytest.raises(MessageValidationError, match="Message cannot be empty"):
        await service.send_message(conversation.id, "user-alice", content)
    assert await db["messages"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_over_length_content_is_rejected(service, db, conversation):
    with pytest.raises(MessageValidationError, match=r"Message too long \(max 1000 characters\)"):
        await service.send_message(conversation.id, "user-alice", "x" * 1200)
    assert await db["messages"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_length_bounds(service, conversation):
    exact = await service.send_message(conversation.id, "user-alice", "y" * 1000)
    padded = await service.send_message(conversation.id, "user-alice", "  " + "z" * 1000 + "  ")

    assert len(exact.content) == 1000
    assert len(padded.content) == 1000


@pytest.mark.asyncio
async def test_history_is_ascending(service, conversation):
    for i in range(5):
        sender = "user-alice" if i % 2 == 0 else "user-bob"
        await service.send_message(conversation.id, sender, f"message {i}")

    history = await service.get_history(conversation.id, "user-bob")

    assert [m.content for m in history] == [f"message {i}" for i in range(5)]
    assert [m.created_at for m in history] == sorted(m.created_at for m in history)


@pytest.mark.asyncio
async def test_outsider_cannot_read_or_write(service, conversation):
    with pytest.raises(NotParticipant):
        await service.get_history(conversation.id, "user-carol")
    with pytest.raises(NotParticipant):
        await service.send_message(conversation.id, "user-carol", "hello")
    with pytest.raises(NotParticipant):
        await service.mark_read(conversation.id, "user-carol")


@pytest.mark.asyncio
async def test_unknown_conversation(service):
    with pytest.raises(ConversationNotFound):
        await service.get_history("0123456789abcdef01234567", "user-alice")
    with pytest.raises(ConversationNotFound):
        await service.get_history("not-an-id", "user-alice")


@pytest.mark.asyncio
async def test_mark_read_flips_only_other_senders_messages(service, conversation):
    await service.send_message(conversation.id, "user-alice", "from alice 1")
    await service.send_message(conversation.id, "user-alice", "from alice 2")
    await service.send_message(conversation.id, "user-bob", "from bob")

    flipped = await service.mark_read(conversation.id, "user-bob")

    assert [m.content for m in flipped] == ["from alice 1", "from alice 2"]
    assert all(m.read and m.read_at is not None for m in flipped)
    history = {m.content: m for m in await service.get_history(conversation.id, "user-bob")}
    assert history["from bob"].read is False


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_and_monotonic(service, conversation):
    await service.send_message(conversation.id, "user-alice", "hello")
    first = await service.mark_read(conversation.id, "user-bob")
    second = await service.mark_read(conversation.id, "user-bob")
    # the sender marking their own view read does not touch their own messages
    third = await service.mark_read(conversation.id, "user-alice")

    assert len(first) == 1
    assert second == []
    assert third == []
    [message] = await service.get_history(conversation.id, "user-alice")
    assert message.read is True
    assert message.read_at == first[0].read_at


@pytest.mark.asyncio
async def test_send_and_read_publish_change_events(service, bus, conversation):
    sub, received = await _collect(bus, conversation_channel(conversation.id))

    sent = await service.send_message(conversation.id, "user-alice", "Is this my backpack?")
    await service.mark_read(conversation.id, "user-bob")
    await _drain(sub)

    assert isinstance(received[0], MessageInserted)
    assert received[0].record.id == sent.id
    assert isinstance(received[1], MessageUpdated)
    assert received[1].record.id == sent.id
    assert received[1].record.read is True


@pytest.mark.asyncio
async def test_presence_tracking_syncs_state(service, bus, conversation):
    sub, received = await _collect(bus, conversation_channel(conversation.id))

    await service.track_presence(conversation.id, "user-alice", typing=True)
    await service.track_presence(conversation.id, "user-bob", typing=False)
    await service.untrack_presence(conversation.id, "user-alice")
    await _drain(sub)

    assert all(isinstance(e, PresenceSynced) for e in received)
    assert received[0].anyone_typing(except_user="user-bob") is True
    assert received[0].anyone_typing(except_user="user-alice") is False
    assert set(received[1].state) == {"user-alice", "user-bob"}
    assert set(received[2].state) == {"user-bob"}


@pytest.mark.asyncio
async def test_inbox_lists_conversations_with_previews(service, db, conversation):
    await service.send_message(conversation.id, "user-alice", "first")
    await service.send_message(conversation.id, "user-alice", "Is this my backpack?")

    [for_bob], _ = await service.list_conversations("user-bob")
    [for_alice], _ = await service.list_conversations("user-alice")

    assert for_bob.id == conversation.id
    assert for_bob.item.building == "Library"
    assert for_bob.claimer_profile.display_name == "Alice Claimer"
    assert for_bob.uploader_profile.display_name == "bob@campus.edu"
    assert for_bob.latest_message.content == "Is this my backpack?"
    assert for_bob.unread_count == 2
    assert for_alice.unread_count == 0
    assert await service.list_conversations("user-carol") == ([], None)


@pytest.mark.asyncio
async def test_deleted_item_leaves_conversation_listed(service, db, conversation):
    await service.send_message(conversation.id, "user-alice", "still there?")
    await db["items"].delete_one({"_id": "item-backpack"})

    [overview], _ = await service.list_conversations("user-alice")
    history = await service.get_history(conversation.id, "user-bob")

    assert overview.item is None
    assert overview.item_id == "item-backpack"
    assert [m.content for m in history] == ["still there?"]


class _MotorCursor:
    """Cuts ``to_list`` at ``length`` like motor does; the in-memory double ignores it."""

    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def limit(self, count):
        self._cursor = self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        items = await self._cursor.to_list(length)
        return items if length is None else items[:length]


class _MotorCollection:

    def __init__(self, collection):
        self._collection = collection

    def __getattr__(self, name):
        return getattr(self._collection, name)

    def find(self, *args, **kwargs):
        return _MotorCursor(self._collection.find(*args, **kwargs))


@pytest.mark.asyncio
async def test_history_keeps_the_newest_messages_of_long_conversations(service, db, conversation, monkeypatch):
    monkeypatch.setattr(MessageRepository, "collection", property(lambda self: _MotorCollection(self._db["messages"])))
    start = datetime(2024, 9, 2, 8, 0, tzinfo=timezone.utc)
    await db["messages"].insert_many([
        {
            "conversation_id": conversation.id,
            "sender_id": "user-alice",
            "content": f"m{i}",
            "created_at": start + timedelta(seconds=i),
            "read": False,
            "read_at": None,
            "client_message_id": None,
        }
        for i in range(1001)
    ])

    history = await service.get_history(conversation.id, "user-bob")

    assert len(history) == 1001
    assert history[0].content == "m0"
    assert history[-1].content == "m1000"


@pytest.mark.asyncio
async def test_inbox_pages_newest_first(service, conversation):
    newer = await service.claim_item("item-backpack", "user-carol")

    first_page, cursor = await service.list_conversations("user-bob", limit=1)
    assert [c.id for c in first_page] == [newer.id]
    assert cursor == newer.id

    second_page, cursor = await service.list_conversations("user-bob", limit=1, cursor=cursor)
    assert [c.id for c in second_page] == [conversation.id]

    last_page, cursor = await service.list_conversations("user-bob", limit=1, cursor=cursor)
    assert last_page == []
    assert cursor is None

    everything, cursor = await service.list_conversations("user-bob")
    assert [c.id for c in everything] == [newer.id, conversation.id]
    assert cursor is None


@pytest.mark.asyncio
async def test_inbox_rejects_malformed_cursor(service, conversation):
    with pytest.raises(InvalidCursor):
        await service.list_conversations("user-bob", cursor="not-an-id")
