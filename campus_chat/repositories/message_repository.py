from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from campus_chat.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("conversation_id", ASCENDING), ("read", ASCENDING)])

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "created_at": datetime.now(timezone.utc),
            "read": False,
            "read_at": None,
            "client_message_id": client_message_id,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def list_by_conversation(self, conversation_id: str) -> List[MessageDocument]:
        """Every message of the conversation, oldest first."""
        cursor = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def get_latest(self, conversation_id: str) -> Optional[MessageDocument]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", -1), ("_id", -1)]
        ).limit(1)
        items = await cursor.to_list(length=1)
        if not items:
            return None
        items[0]["_id"] = str(items[0]["_id"])
        return items[0]

    async def count_unread(self, conversation_id: str, reader_id: str) -> int:
        return await self.collection.count_documents(
            {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "read": False}
        )

    async def mark_messages_as_read(self, conversation_id: str, user_id: str) -> List[MessageDocument]:
        """Flip every unread message not sent by ``user_id`` to read.

        Returns the rows this call flipped; rows already read are left alone so
        repeating the call is a no-op.
        """
        query: Dict[str, Any] = {"conversation_id": conversation_id, "sender_id": {"$ne": user_id}, "read": False}
        pending = await self.collection.find(query, {"_id": 1}).to_list(length=None)
        if not pending:
            return []
        now = datetime.now(timezone.utc)
        flipped = []
        for doc in pending:
            # the read filter keeps a concurrent reader from stamping read_at twice
            result = await self.collection.update_one(
                {"_id": doc["_id"], "read": False},
                {"$set": {"read": True, "read_at": now}},
            )
            if result.modified_count:
                flipped.append(doc["_id"])
        if not flipped:
            return []
        cursor = self.collection.find({"_id": {"$in": flipped}})
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        items.sort(key=lambda it: (it["created_at"], it["_id"]))
        return items

