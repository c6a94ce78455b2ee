from datetime import datetime
from typing import List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from petchat.models.message import MessageDocument
from petchat.utils.timeutils import ensure_utc


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)])

    async def save_message(self, conversation_id: str, sender_id: str, text: str, created_at: datetime) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "text": text,
            "created_at": created_at,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def delete_message(self, message_id: str) -> None:
        await self.collection.delete_one({"_id": ObjectId(message_id)})

    async def get_messages_by_conversation(self, conversation_id: str) -> List[MessageDocument]:
        # ObjectIds minted by one process increase, so _id breaks created_at ties in insert order
        cursor = self.collection.find({"conversation_id": conversation_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        items = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            doc["created_at"] = ensure_utc(doc.get("created_at"))
            items.append(doc)
        return items
