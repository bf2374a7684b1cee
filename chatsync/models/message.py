from datetime import datetime
from typing import Optional, TypedDict

from bson import ObjectId

from chatsync.models.conversation import MessageType


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation_id: ObjectId
    sender_id: str
    content: str
    type: MessageType
    # stamped once at insert; the only instant the summary ever uses
    created_at: datetime
    # client ack
    client_message_id: Optional[str]
