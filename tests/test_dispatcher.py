import pytest

from devconnect.models.chat import MessageStatus
from devconnect.schemas.chat import MarkSeenPayload, SendGroupMessagePayload, SendMessagePayload
from devconnect.websocket.dispatcher import FORBIDDEN, INVALID, PERSIST_FAILED
from devconnect.websocket.lifecycle import Connection
from devconnect.websocket.rooms import direct_room_id

from conftest import DummyWebSocket


def direct(text, sender="alice", target="bob"):
    return SendMessagePayload(user_id=sender, target_user_id=target, text=text)


def group(text, sender="alice", group_id="g1"):
    return SendGroupMessagePayload(user_id=sender, group_id=group_id, text=text)


@pytest.mark.asyncio
async def test_new_direct_chat_is_created_and_broadcast(dispatcher, chats, rooms):
    bob = Connection(DummyWebSocket())
    rooms.join_room(bob, direct_room_id("bob", "alice"))

    result = await dispatcher.send_direct(direct("hi"))

    assert result.ok
    conversation = await chats.find_direct("alice", "bob")
    assert conversation.participants == ["alice", "bob"]
    stored = chats.messages[conversation.id]
    assert [(m.sender_id, m.text) for m in stored] == [("alice", "hi")]
    assert stored[0].status == MessageStatus.SENT

    received = bob.websocket.events("messageReceived")
    assert len(received) == 1
    assert received[0]["text"] == "hi"
    assert received[0]["senderId"] == "alice"
    assert received[0]["timestamp"]


@pytest.mark.asyncio
async def test_messages_keep_send_order(dispatcher, chats):
    await dispatcher.send_direct(direct("one"))
    await dispatcher.send_direct(direct("two"))
    await dispatcher.send_direct(direct("reply", sender="bob", target="alice"))

    conversation = await chats.find_direct("bob", "alice")
    assert [m.text for m in chats.messages[conversation.id]] == ["one", "two", "reply"]
    assert len(chats.conversations) == 1


@pytest.mark.asyncio
async def test_empty_text_is_dropped(dispatcher, chats):
    result = await dispatcher.send_direct(direct("   "))

    assert not result.ok and result.reason == INVALID
    assert chats.conversations == {}


@pytest.mark.asyncio
async def test_direct_message_to_self_is_dropped(dispatcher, chats):
    result = await dispatcher.send_direct(direct("me", target="alice"))

    assert result.reason == INVALID
    assert chats.conversations == {}


@pytest.mark.asyncio
async def test_persist_failure_skips_broadcast(dispatcher, chats, rooms):
    bob = Connection(DummyWebSocket())
    rooms.join_room(bob, direct_room_id("alice", "bob"))
    chats.fail_append = True

    result = await dispatcher.send_direct(direct("lost"))

    assert not result.ok and result.reason == PERSIST_FAILED
    assert bob.websocket.sent == []


@pytest.mark.asyncio
async def test_group_send_by_non_member_is_declined(dispatcher, chats, rooms):
    carol = Connection(DummyWebSocket())
    rooms.join_room(carol, "g1")

    result = await dispatcher.send_group(group("spam", sender="bob"))

    assert not result.ok and result.reason == FORBIDDEN
    assert await chats.find_group("g1") is None
    assert carol.websocket.sent == []


@pytest.mark.asyncio
async def test_group_send_broadcasts_sender_name(dispatcher, chats, rooms):
    carol = Connection(DummyWebSocket())
    rooms.join_room(carol, "g1")

    result = await dispatcher.send_group(group("standup in 5"))

    assert result.ok
    conversation = await chats.find_group("g1")
    assert [m.text for m in chats.messages[conversation.id]] == ["standup in 5"]
    assert chats.messages[conversation.id][0].status is None

    received = carol.websocket.events("groupMessageReceived")
    assert received[0]["senderId"] == "alice"
    assert received[0]["senderName"] == "Alice Liddell"
    assert received[0]["text"] == "standup in 5"


@pytest.mark.asyncio
async def test_group_membership_is_rechecked_on_send(dispatcher, rooms, groups, chats):
    alice = Connection(DummyWebSocket())
    assert await rooms.join_group_room(alice, "alice", "g1")
    groups.remove_member("g1", "alice")

    result = await dispatcher.send_group(group("still here?"))

    assert result.reason == FORBIDDEN
    assert await chats.find_group("g1") is None


@pytest.mark.asyncio
async def test_sender_name_falls_back_to_id(dispatcher, rooms, groups, users):
    groups.add("g2", "Ghosts", ["ghost"])
    conn = Connection(DummyWebSocket())
    rooms.join_room(conn, "g2")

    await dispatcher.send_group(group("boo", sender="ghost", group_id="g2"))

    assert conn.websocket.events("groupMessageReceived")[0]["senderName"] == "ghost"


@pytest.mark.asyncio
async def test_mark_seen_flips_peer_messages(dispatcher, chats, rooms):
    alice = Connection(DummyWebSocket())
    rooms.join_room(alice, direct_room_id("alice", "bob"))
    await dispatcher.send_direct(direct("one"))
    await dispatcher.send_direct(direct("two"))
    await dispatcher.send_direct(direct("mine", sender="bob", target="alice"))

    count = await dispatcher.mark_seen(MarkSeenPayload(user_id="bob", target_user_id="alice"))

    assert count == 2
    conversation = await chats.find_direct("alice", "bob")
    statuses = {m.text: m.status for m in chats.messages[conversation.id]}
    assert statuses == {
        "one": MessageStatus.SEEN,
        "two": MessageStatus.SEEN,
        "mine": MessageStatus.SENT,
    }
    assert alice.websocket.events("messagesSeen") == [{"readerId": "bob", "count": 2}]


@pytest.mark.asyncio
async def test_mark_seen_without_conversation(dispatcher):
    assert await dispatcher.mark_seen(MarkSeenPayload(user_id="bob", target_user_id="carol")) == 0
