from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from chatsync.utils.clock import as_utc


class ConversationCreate(BaseModel):

    participants: List[str] = Field(min_length=1)
    name: Optional[str] = Field(default=None, max_length=200)


class ConversationRename(BaseModel):

    name: str = Field(min_length=1, max_length=200)


class ConversationSummary(BaseModel):

    id: str
    participants: List[str]
    name: Optional[str] = None
    sequence: int
    last_message_ref: Optional[str] = None
    last_message_text: Optional[str] = None
    last_message_timestamp: Optional[datetime] = None
    last_message_sender: Optional[str] = None
    last_message_type: Optional[Literal["text", "file"]] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("last_message_timestamp", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConversationSummary":
        ref = doc.get("last_message_ref")
        return cls(
            id=str(doc["_id"]),
            participants=list(doc.get("participants", [])),
            name=doc.get("name"),
            sequence=doc["sequence"],
            last_message_ref=str(ref) if ref is not None else None,
            last_message_text=doc.get("last_message_text"),
            last_message_timestamp=doc.get("last_message_timestamp"),
            last_message_sender=doc.get("last_message_sender"),
            last_message_type=doc.get("last_message_type"),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


class UpdatedSummary(BaseModel):
    """Result of a synchronizer write.

    ``applied`` is False when the message was older than the stored latest
    one and the summary was left untouched.
    """

    summary: ConversationSummary
    applied: bool = True


class ConversationPage(BaseModel):

    items: List[ConversationSummary]
    next_cursor: Optional[str] = None
