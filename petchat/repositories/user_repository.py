from typing import Dict, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from petchat.models.user import UserDocument


class UserRepository:
    """Read access to the user directory owned by the accounts service."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def create_user(self, email: str, full_name: Optional[str], avatar: Optional[str] = None) -> str:

        doc = {"email": email, "full_name": full_name, "avatar": avatar}
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:

        if not ObjectId.is_valid(user_id):
            return None
        user = await self._collection.find_one({"_id": ObjectId(user_id)})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> Dict[str, UserDocument]:

        oids = [ObjectId(u) for u in set(user_ids) if ObjectId.is_valid(u)]
        if not oids:
            return {}
        users: Dict[str, UserDocument] = {}
        async for user in self._collection.find({"_id": {"$in": oids}}):
            user["_id"] = str(user["_id"])
            users[user["_id"]] = user
        return users
