from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from chatsync.utils.clock import as_utc


class MessageCreate(BaseModel):

    content: str = Field(min_length=1)
    type: Literal["text", "file"] = "text"
    client_message_id: Optional[str] = None

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content cannot be empty")
        return value.strip()


class PersistedMessage(BaseModel):
    """A message as handed over by the message store, with its creation instant."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    type: Literal["text", "file"] = "text"
    created_at: datetime
    client_message_id: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PersistedMessage":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            content=doc["content"],
            type=doc.get("type", "text"),
            created_at=doc["created_at"],
            client_message_id=doc.get("client_message_id"),
        )
