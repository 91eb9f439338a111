from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_chat.models.profile import ProfileDocument


class ProfileRepository:
    """Read-only view of the profiles owned by the auth platform."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("profiles")

    async def get_profile(self, user_id: str) -> Optional[ProfileDocument]:
        profile = await self._collection.find_one({"_id": user_id})
        if profile:
            profile["_id"] = str(profile["_id"])
        return profile

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileDocument]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": ids}})
        profiles = {}
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            profiles[doc["_id"]] = doc
        return profiles
