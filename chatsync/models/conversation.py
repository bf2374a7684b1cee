from datetime import datetime
from typing import List, Literal, Optional, TypedDict

from bson import ObjectId


MessageType = Literal["text", "file"]


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    participants: List[str]
    name: Optional[str]
    # ordering tiebreaker, assigned once from the counters collection
    sequence: int
    # denormalized latest-message fields; None until the first message
    last_message_ref: Optional[ObjectId]
    last_message_text: Optional[str]
    last_message_timestamp: Optional[datetime]
    last_message_sender: Optional[str]
    last_message_type: Optional[MessageType]
    created_at: datetime
    # audit only, never a sort key
    updated_at: datetime


# fields only the synchronizer (or recompute) may write
MESSAGE_FIELDS = (
    "last_message_ref",
    "last_message_text",
    "last_message_timestamp",
    "last_message_sender",
    "last_message_type",
)
