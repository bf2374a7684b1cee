"""Pre-persist stamping for conversation summary writes.

Every write the conversation repository issues passes through
``stamp_summary_write`` before reaching Mongo. Writes that carry a message
instant reuse it for ``updated_at``; all other writes get a fresh ``now``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict

from chatsync.models.conversation import MESSAGE_FIELDS
from chatsync.utils.clock import utcnow


class SummaryWriteKind(str, Enum):
    MESSAGE = "message"
    METADATA = "metadata"


def classify_summary_write(changes: Dict[str, Any]) -> SummaryWriteKind:
    if changes.get("last_message_timestamp") is not None:
        return SummaryWriteKind.MESSAGE
    return SummaryWriteKind.METADATA


def stamp_summary_write(
    changes: Dict[str, Any],
    now: Callable[[], datetime] = utcnow,
) -> SummaryWriteKind:
    """Set ``updated_at`` on a pending ``$set`` payload, in place.

    Message writes keep ``updated_at == last_message_timestamp``. A message
    write that already carries a different ``updated_at`` is rejected.
    """
    kind = classify_summary_write(changes)
    if kind is SummaryWriteKind.MESSAGE:
        ts = changes["last_message_timestamp"]
        existing = changes.setdefault("updated_at", ts)
        if existing != ts:
            raise ValueError("updated_at must equal last_message_timestamp on message writes")
    else:
        changes["updated_at"] = now()
    return kind


def guard_metadata_changes(changes: Dict[str, Any]) -> None:
    """Reject metadata edits that try to write message-owned or audit fields."""
    forbidden = [f for f in (*MESSAGE_FIELDS, "updated_at", "sequence") if f in changes]
    if forbidden:
        raise ValueError(f"metadata edits may not set {', '.join(forbidden)}")
