"""Shared fixtures: an in-memory Mongo double, the local bus and seeded users."""

import asyncio

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from campus_chat.client.context import ChatContext
from campus_chat.config import get_settings
from campus_chat.repositories.conversation_repository import ConversationRepository
from campus_chat.repositories.message_repository import MessageRepository
from campus_chat.schemas.profile import ProfilePublic
from campus_chat.services.chat_service import build_chat_service
from campus_chat.utils.realtime_bus import LocalBus


ALICE = {"_id": "user-alice", "email": "alice@campus.edu", "full_name": "Alice Claimer"}
BOB = {"_id": "user-bob", "email": "bob@campus.edu", "full_name": None}
CAROL = {"_id": "user-carol", "email": "carol@campus.edu", "full_name": "Carol Outsider"}
BACKPACK = {
    "_id": "item-backpack",
    "uploader_id": "user-bob",
    "description": "Blue backpack with a laptop sleeve",
    "building": "Library",
    "classroom": "L-201",
    "category": "accessories",
    "status": "found",
}


async def seed(db) -> None:
    await db["profiles"].insert_many([dict(ALICE), dict(BOB), dict(CAROL)])
    await db["items"].insert_one(dict(BACKPACK))
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["campus_chat_test"]
    await seed(database)
    return database


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def service(db, bus):
    return build_chat_service(db, bus, get_settings())


@pytest.fixture
def alice_context(service, bus):
    return ChatContext(service, bus, ProfilePublic.from_document(ALICE))


@pytest.fixture
def bob_context(service, bus):
    return ChatContext(service, bus, ProfilePublic.from_document(BOB))


@pytest.fixture
def carol_context(service, bus):
    return ChatContext(service, bus, ProfilePublic.from_document(CAROL))


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Yield to the loop until ``predicate()`` holds or fail after ``timeout``."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)
