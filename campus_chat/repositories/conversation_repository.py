from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from campus_chat.errors import InvalidCursor
from campus_chat.models.conversation import ConversationDocument


logger = structlog.get_logger()


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # one negotiation per (item, claimer); a second insert raises DuplicateKeyError
        await self.collection.create_index(
            [("item_id", ASCENDING), ("claimer_id", ASCENDING)],
            unique=True,
            name="uniq_item_claimer",
        )
        await self.collection.create_index([("uploader_id", ASCENDING)])

    async def find_for_claim(self, item_id: str, claimer_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"item_id": item_id, "claimer_id": claimer_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def create(self, item_id: str, claimer_id: str, uploader_id: str) -> ConversationDocument:
        doc: ConversationDocument = {
            "item_id": item_id,
            "claimer_id": claimer_id,
            "uploader_id": uploader_id,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_or_create_for_claim(self, item_id: str, claimer_id: str, uploader_id: str) -> ConversationDocument:
        existing = await self.find_for_claim(item_id, claimer_id)
        if existing:
            return existing
        try:
            return await self.create(item_id, claimer_id, uploader_id)
        except DuplicateKeyError:
            # lost the race against a concurrent claim; the winner's row is the answer
            logger.info("conversation_create_conflict", item_id=item_id, claimer_id=claimer_id)
            existing = await self.find_for_claim(item_id, claimer_id)
            if existing is None:
                raise
            return existing

    async def get_by_id(self, conversation_id: str) -> Optional[ConversationDocument]:
        if not ObjectId.is_valid(conversation_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(conversation_id)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def list_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationDocument], Optional[str]]:
        """One page of the user's conversations, newest first.

        ObjectIds grow with insertion time, so ``_id`` alone orders the inbox and
        the cursor is the hex id of the last row returned. ``next_cursor`` is
        None when the page came back short.
        """
        query: Dict[str, Any] = {"$or": [{"claimer_id": user_id}, {"uploader_id": user_id}]}
        if cursor:
            if not ObjectId.is_valid(cursor):
                raise InvalidCursor(cursor)
            query["_id"] = {"$lt": ObjectId(cursor)}
        cursor_db = self.collection.find(query).sort([("_id", DESCENDING)]).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        next_cursor = items[-1]["_id"] if len(items) == limit else None
        return items, next_cursor
