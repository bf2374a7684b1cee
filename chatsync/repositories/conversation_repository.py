from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import AutoReconnect, ExecutionTimeout, OperationFailure

from chatsync.errors import ApiErrorCode, ConflictError, InvalidRequestError
from chatsync.logging import get_logger
from chatsync.models.conversation import MESSAGE_FIELDS, ConversationDocument
from chatsync.services.summary_guard import guard_metadata_changes, stamp_summary_write
from chatsync.utils.clock import from_millis, to_millis, utcnow

logger = get_logger(__name__)

WRITE_CONFLICT_CODE = 112
SEQUENCE_COUNTER_ID = "conversation_sequence"
LIST_SORT = [("last_message_timestamp", DESCENDING), ("sequence", DESCENDING)]


def to_object_id(value) -> Optional[ObjectId]:
    """Parse an id; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


@contextmanager
def contention_as_conflict(conversation_id) -> Iterator[None]:
    """Surface storage-level contention and timeouts as ConflictError."""
    try:
        yield
    except (AutoReconnect, ExecutionTimeout) as exc:
        logger.warning("summary_write_contended", conversation_id=str(conversation_id), error=str(exc))
        raise ConflictError(message=f"Summary update for {conversation_id} did not complete") from exc
    except OperationFailure as exc:
        if exc.code == WRITE_CONFLICT_CODE or exc.has_error_label("TransientTransactionError"):
            logger.warning("summary_write_conflict", conversation_id=str(conversation_id), code=exc.code)
            raise ConflictError(message=f"Summary update for {conversation_id} conflicted") from exc
        raise


def encode_cursor(doc: Dict[str, Any]) -> str:
    # Cursor format: timestamp_ms:sequence, or -:sequence once past the no-message tail
    ts = doc.get("last_message_timestamp")
    head = "-" if ts is None else str(to_millis(ts))
    return f"{head}:{doc['sequence']}"


def decode_cursor(cursor: str) -> Dict[str, Any]:
    """Translate a listing cursor into the keyset filter that resumes after it."""
    try:
        ts_str, seq_str = cursor.split(":", 1)
        seq = int(seq_str)
        ts = None if ts_str == "-" else from_millis(int(ts_str))
    except (ValueError, OverflowError, OSError) as exc:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Malformed cursor") from exc
    if ts is None:
        return {"last_message_timestamp": None, "sequence": {"$lt": seq}}
    return {
        "$or": [
            {"last_message_timestamp": {"$lt": ts}},
            {"last_message_timestamp": ts, "sequence": {"$lt": seq}},
            {"last_message_timestamp": None},
        ]
    }


class ConversationRepository:
    """Conversation summary store.

    Writes go through the summary guard, so ``updated_at`` is never set by
    callers directly.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @property
    def counters(self):
        return self._db["counters"]

    async def ensure_indexes(self) -> None:
        # unique constraint on sequence doubles as its lookup index
        await self.collection.create_index([("sequence", ASCENDING)], unique=True)
        await self.collection.create_index(
            [("participants", ASCENDING)] + LIST_SORT,
            name="participants_recency",
        )

    async def next_sequence(self) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": SEQUENCE_COUNTER_ID},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["value"]

    async def create(self, participants: List[str], name: Optional[str] = None) -> ConversationDocument:
        now = utcnow()
        doc: Dict[str, Any] = {
            "participants": sorted(set(participants)),
            "name": name,
            "sequence": await self.next_sequence(),
            "created_at": now,
        }
        doc.update({field: None for field in MESSAGE_FIELDS})
        stamp_summary_write(doc, now=lambda: now)
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("conversation_created", conversation_id=str(doc["_id"]), sequence=doc["sequence"])
        return doc

    async def get(self, conversation_id) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def apply_message(self, conversation_id: ObjectId, fields: Dict[str, Any]) -> Tuple[Optional[ConversationDocument], bool]:
        """Write the latest-message fields if the message is not older than the stored one.

        Ordering is by ``(last_message_timestamp, last_message_ref)``; an equal
        pair rewrites identical values, so replays are harmless.

        A stale message still writes: the stored timestamp is rewritten as is
        and ``updated_at`` realigned to it, preview fields untouched.

        Returns ``(document, applied)``. The document is None when the
        conversation does not exist; ``applied`` is False for stale messages.
        """
        changes = dict(fields)
        stamp_summary_write(changes)
        ts = changes["last_message_timestamp"]
        ref = changes["last_message_ref"]
        query = {
            "_id": conversation_id,
            "$or": [
                {"last_message_timestamp": None},
                {"last_message_timestamp": {"$lt": ts}},
                {"last_message_timestamp": ts, "last_message_ref": {"$lte": ref}},
            ],
        }
        with contention_as_conflict(conversation_id):
            updated = await self.collection.find_one_and_update(
                query,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated, True
            current = await self.collection.find_one({"_id": conversation_id})
            if current is None:
                return None, False
            kept = {"last_message_timestamp": current["last_message_timestamp"]}
            stamp_summary_write(kept)
            # matches nothing if a newer message landed in between; that write is coherent already
            realigned = await self.collection.find_one_and_update(
                {"_id": conversation_id, "last_message_timestamp": kept["last_message_timestamp"]},
                {"$set": kept},
                return_document=ReturnDocument.AFTER,
            )
            if realigned is None:
                realigned = await self.collection.find_one({"_id": conversation_id})
        return realigned, False

    async def replace_message_fields(
        self,
        conversation_id: ObjectId,
        expected_ref: Optional[ObjectId],
        fields: Dict[str, Any],
    ) -> Optional[ConversationDocument]:
        """Overwrite the latest-message fields if ``last_message_ref`` is still ``expected_ref``.

        Returns None when the stored ref moved on in the meantime.
        """
        changes = dict(fields)
        stamp_summary_write(changes)
        with contention_as_conflict(conversation_id):
            return await self.collection.find_one_and_update(
                {"_id": conversation_id, "last_message_ref": expected_ref},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )

    async def update_metadata(self, conversation_id: ObjectId, changes: Dict[str, Any]) -> Optional[ConversationDocument]:
        guard_metadata_changes(changes)
        changes = dict(changes)
        stamp_summary_write(changes)
        with contention_as_conflict(conversation_id):
            return await self.collection.find_one_and_update(
                {"_id": conversation_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        if cursor:
            query.update(decode_cursor(cursor))

        cursor_db = self.collection.find(query).sort(LIST_SORT).limit(limit)
        items = await cursor_db.to_list(length=limit)
        next_cursor = encode_cursor(items[-1]) if len(items) == limit else None
        return items, next_cursor
