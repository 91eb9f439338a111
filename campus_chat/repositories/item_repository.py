from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_chat.models.item import ItemDocument


def _id_candidates(item_id: str) -> List[Any]:
    # items may be keyed by ObjectId or by an opaque string id
    candidates: List[Any] = [item_id]
    if ObjectId.is_valid(item_id):
        candidates.append(ObjectId(item_id))
    return candidates


class ItemRepository:
    """Read-only view of the reported items; item CRUD lives elsewhere."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("items")

    async def get_item(self, item_id: str) -> Optional[ItemDocument]:
        doc = await self._collection.find_one({"_id": {"$in": _id_candidates(item_id)}})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_items(self, item_ids: Iterable[str]) -> Dict[str, ItemDocument]:
        candidates: List[Any] = []
        for item_id in set(item_ids):
            candidates.extend(_id_candidates(item_id))
        if not candidates:
            return {}
        items = {}
        async for doc in self._collection.find({"_id": {"$in": candidates}}):
            doc["_id"] = str(doc["_id"])
            items[doc["_id"]] = doc
        return items
