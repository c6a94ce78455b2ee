from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from petchat.models.conversation import ConversationDocument
from petchat.utils.timeutils import ensure_utc, utcnow


def pair_key(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))


def conversation_key(conversation_id: str) -> Optional[str]:
    """Stored form of a conversation id (lower-case hex), or None if it cannot be one."""
    if not ObjectId.is_valid(conversation_id):
        return None
    return str(ObjectId(conversation_id))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING), ("updated_at", DESCENDING)])

    async def get_by_id(self, conversation_id: str) -> Optional[ConversationDocument]:
        if not ObjectId.is_valid(conversation_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(conversation_id)})
        return self._normalize(doc) if doc else None

    async def get_or_create_one_to_one(self, user_a: str, user_b: str, related_ref: Optional[str] = None) -> ConversationDocument:
        key = pair_key(user_a, user_b)
        now = utcnow()
        on_insert: Dict[str, Any] = {
            "participants": sorted([user_a, user_b]),
            "related_ref": related_ref,
            "last_message_id": None,
            "last_message_preview": "",
            "created_at": now,
            "updated_at": now,
        }
        try:
            doc = await self.collection.find_one_and_update(
                {"pair_key": key},
                {"$setOnInsert": on_insert},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # a concurrent upsert for the same pair won the insert
            doc = await self.collection.find_one({"pair_key": key})
        return self._normalize(doc)

    async def update_on_new_message(self, conversation_id: str, message_id: Optional[str], preview: str, at: datetime) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {
                "$set": {
                    "last_message_id": message_id,
                    "last_message_preview": preview,
                    "updated_at": at,
                },
            },
        )

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        cursor = self.collection.find({"participants": user_id}).sort([("updated_at", DESCENDING), ("_id", DESCENDING)])
        items = []
        async for doc in cursor:
            items.append(self._normalize(doc))
        return items

    def _normalize(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc["_id"] = str(doc["_id"])
        doc["created_at"] = ensure_utc(doc.get("created_at"))
        doc["updated_at"] = ensure_utc(doc.get("updated_at"))
        return doc
