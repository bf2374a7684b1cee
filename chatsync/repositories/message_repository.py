from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from chatsync.models.message import MessageDocument
from chatsync.utils.clock import utcnow


class MessageRepository:
    """Minimal message store: stamps ``created_at`` once at write time."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]
        )

    async def save_message(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        content: str,
        message_type: str = "text",
        client_message_id: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "type": message_type,
            "created_at": utcnow(),
            "client_message_id": client_message_id,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_message(self, message_id: ObjectId) -> Optional[MessageDocument]:
        return await self.collection.find_one({"_id": message_id})

    async def latest_for_conversation(self, conversation_id: ObjectId) -> Optional[MessageDocument]:
        cur = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", DESCENDING), ("_id", DESCENDING)]
        ).limit(1)
        items = await cur.to_list(length=1)
        return items[0] if items else None

    async def delete_message(self, message_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": message_id})
        return bool(result.deleted_count)
