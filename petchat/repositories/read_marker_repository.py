from datetime import datetime
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from petchat.models.read_marker import ReadMarkerDocument
from petchat.utils.timeutils import ensure_utc


class ReadMarkerRepository:
    """Per (user, conversation) unread counters and read markers."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["read_markers"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING), ("conversation_id", ASCENDING)], unique=True)

    async def increment(self, user_id: str, conversation_id: str, by: int = 1) -> None:
        # $inc is atomic on the server, so concurrent deliveries never lose an update
        key = {"user_id": user_id, "conversation_id": conversation_id}
        update = {
            "$inc": {"unread_count": by},
            "$setOnInsert": {"last_read_at": None, "last_read_message_id": None},
        }
        try:
            await self.collection.update_one(key, update, upsert=True)
        except DuplicateKeyError:
            await self.collection.update_one(key, update)

    async def reset(self, user_id: str, conversation_id: str, at: datetime, last_message_id: Optional[str]) -> bool:
        """Clear the counter and advance the marker. Returns False when there was nothing to clear."""
        key = {"user_id": user_id, "conversation_id": conversation_id}
        while True:
            existing: Optional[ReadMarkerDocument] = await self.collection.find_one(key)
            if existing is None:
                # first view of this conversation
                try:
                    await self.collection.insert_one(
                        {**key, "unread_count": 0, "last_read_at": at, "last_read_message_id": last_message_id}
                    )
                except DuplicateKeyError:
                    continue
                return True

            count = existing.get("unread_count", 0)
            last_read_at = ensure_utc(existing.get("last_read_at"))
            if count == 0 and last_read_at is not None:
                return False
            # the marker never moves backwards
            if last_read_at is not None and last_read_at > at:
                at = last_read_at
            # compare-and-set on the counter so an increment landing in between is not wiped
            result = await self.collection.update_one(
                {"_id": existing["_id"], "unread_count": count},
                {"$set": {"unread_count": 0, "last_read_at": at, "last_read_message_id": last_message_id}},
            )
            if result.matched_count:
                return True

    async def get_counts_for_user(self, user_id: str) -> Dict[str, int]:
        cursor = self.collection.find({"user_id": user_id, "unread_count": {"$gt": 0}})
        counts: Dict[str, int] = {}
        async for doc in cursor:
            counts[doc["conversation_id"]] = int(doc["unread_count"])
        return counts
