import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from devconnect.core.db import Base
from devconnect.models.chat import Conversation, ConversationKind, Message, MessageStatus
from devconnect.services.presence import PresenceRegistry
from devconnect.websocket.dispatcher import MessageDispatcher
from devconnect.websocket.lifecycle import ConnectionLifecycle
from devconnect.websocket.rooms import RoomRouter

pytest_plugins = ('pytest_asyncio',)


@pytest.fixture(autouse=True)
def suppress_logging(monkeypatch):
    """Lower logging during tests to reduce noise."""
    import logging
    logging.getLogger().setLevel(logging.WARNING)
    yield


class DummyWebSocket:
    def __init__(self, fail_send=False):
        self.accepted = False
        self.sent = []
        self.fail_send = fail_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail_send:
            raise RuntimeError("send failed")
        await asyncio.sleep(0)
        self.sent.append(message)

    def events(self, name):
        return [m["data"] for m in self.sent if m["event"] == name]


class FakeUserDirectory:
    def __init__(self, fail=False):
        self.users = {}
        self.updates = []
        self.fail = fail

    def add(self, user_id, first_name, last_name=None):
        self.users[user_id] = SimpleNamespace(
            id=user_id,
            first_name=first_name,
            last_name=last_name,
            display_name=" ".join(p for p in (first_name, last_name) if p),
            is_online=False,
            last_seen=None,
        )

    async def find_by_id(self, user_id):
        return self.users.get(user_id)

    async def update_online_status(self, user_id, is_online, last_seen=None):
        if self.fail:
            raise RuntimeError("user store down")
        self.updates.append((user_id, is_online, last_seen))
        user = self.users.get(user_id)
        if user is None:
            return False
        user.is_online = is_online
        if last_seen is not None:
            user.last_seen = last_seen
        return True



class HangingUserDirectory(FakeUserDirectory):
    """A user store whose writes wait until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def update_online_status(self, user_id, is_online, last_seen=None):
        await self.release.wait()
        return await super().update_online_status(user_id, is_online, last_seen)

class FakeGroupDirectory:
    def __init__(self):
        self.groups = {}

    def add(self, group_id, name, members):
        self.groups[group_id] = SimpleNamespace(
            id=group_id,
            name=name,
            members=[SimpleNamespace(user_id=m, role="member") for m in members],
        )

    def remove_member(self, group_id, user_id):
        group = self.groups[group_id]
        group.members = [m for m in group.members if m.user_id != user_id]

    async def find_by_id(self, group_id):
        return self.groups.get(group_id)

    async def is_member(self, group_id, user_id):
        group = self.groups.get(group_id)
        return bool(group) and any(m.user_id == user_id for m in group.members)


class FakeChatService:
    """In-memory conversation store using the real ORM classes, unsaved."""

    def __init__(self):
        self.conversations = {}
        self.messages = {}
        self.fail_append = False
        self._next_message_id = 0

    async def find_direct(self, user_a, user_b):
        low, high = sorted((user_a, user_b))
        for c in self.conversations.values():
            if c.kind == ConversationKind.DIRECT and (c.participant_low, c.participant_high) == (low, high):
                return c
        return None

    async def find_group(self, group_id):
        for c in self.conversations.values():
            if c.kind == ConversationKind.GROUP and c.group_id == group_id:
                return c
        return None

    async def get_or_create_direct(self, user_a, user_b):
        existing = await self.find_direct(user_a, user_b)
        if existing:
            return existing
        low, high = sorted((user_a, user_b))
        return self._create(Conversation(kind=ConversationKind.DIRECT, participant_low=low, participant_high=high))

    async def get_or_create_group(self, group_id):
        existing = await self.find_group(group_id)
        if existing:
            return existing
        return self._create(Conversation(kind=ConversationKind.GROUP, group_id=group_id))

    def _create(self, conversation):
        conversation.id = len(self.conversations) + 1
        conversation.created_at = datetime.utcnow()
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        return conversation

    async def append_message(self, conversation_id, sender_id, text, status=None):
        await asyncio.sleep(0)
        if self.fail_append:
            raise RuntimeError("store unavailable")
        self._next_message_id += 1
        message = Message(
            id=self._next_message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            status=status,
            created_at=datetime.utcnow(),
        )
        self.messages[conversation_id].append(message)
        return message

    async def get_messages(self, conversation_id, limit=None):
        messages = list(self.messages.get(conversation_id, []))
        return messages[-limit:] if limit else messages

    async def mark_seen(self, conversation_id, sender_id):
        count = 0
        for m in self.messages.get(conversation_id, []):
            if m.sender_id == sender_id and m.status == MessageStatus.SENT:
                m.status = MessageStatus.SEEN
                count += 1
        return count


@pytest.fixture
def users():
    directory = FakeUserDirectory()
    directory.add("alice", "Alice", "Liddell")
    directory.add("bob", "Bob")
    directory.add("carol", "Carol", "Danvers")
    return directory


@pytest.fixture
def groups():
    directory = FakeGroupDirectory()
    directory.add("g1", "Rustaceans", ["alice", "carol"])
    return directory


@pytest.fixture
def chats():
    return FakeChatService()


@pytest.fixture
def presence(users):
    return PresenceRegistry(users)


@pytest.fixture
def rooms(groups):
    return RoomRouter(groups)


@pytest.fixture
def dispatcher(chats, rooms, groups, users):
    return MessageDispatcher(chats, rooms, groups, users)


@pytest.fixture
def lifecycle(presence, rooms, dispatcher):
    return ConnectionLifecycle(presence, rooms, dispatcher)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
