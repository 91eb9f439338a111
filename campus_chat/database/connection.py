from typing import Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from campus_chat.config import get_settings


logger = structlog.get_logger()

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _database
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
    _database = _client[settings.mongo_db]
    logger.info("mongo_connected", database=settings.mongo_db)


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        logger.info("mongo_disconnected")
    _client = None
    _database = None


def set_database(db: Optional[AsyncIOMotorDatabase]) -> None:
    """Install an already-built database handle (tests, embedded use)."""
    global _database
    _database = db


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("Database is not connected")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
