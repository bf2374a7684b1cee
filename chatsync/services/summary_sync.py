"""Conversation summary synchronization.

Turns a persisted message into one atomic update of its conversation's
summary. The message's own ``created_at`` is the single instant used for
both ``last_message_timestamp`` and ``updated_at``; the store-side
conditional write keeps ``last_message_timestamp`` from moving backward when
messages arrive out of order.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from chatsync.config import Settings, get_settings
from chatsync.errors import ApiErrorCode, ConflictError, InvalidRequestError, NotFoundError
from chatsync.logging import get_logger
from chatsync.models.conversation import MESSAGE_FIELDS
from chatsync.repositories.conversation_repository import ConversationRepository, to_object_id
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.conversation import ConversationSummary, UpdatedSummary
from chatsync.schemas.message import PersistedMessage
from chatsync.services.notifier import ChangeNotifier
from chatsync.utils.clock import truncate_to_millis

logger = get_logger(__name__)


def conversation_not_found(conversation_id) -> NotFoundError:
    return NotFoundError(
        ApiErrorCode.E_CONVERSATION_NOT_FOUND, f"Conversation {conversation_id} not found"
    )


class SummarySynchronizer:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: Optional[MessageRepository] = None,
        notifier: Optional[ChangeNotifier] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._sleep = sleep

    def _message_fields(self, message: PersistedMessage) -> Dict[str, Any]:
        ref = to_object_id(message.id)
        if ref is None:
            raise InvalidRequestError(message=f"Invalid message id {message.id!r}")
        return {
            "last_message_ref": ref,
            "last_message_text": message.content[: self._settings.preview_max_length],
            "last_message_timestamp": truncate_to_millis(message.created_at),
            "last_message_sender": message.sender_id,
            "last_message_type": message.type,
        }

    async def apply(self, conversation_id: str, message: PersistedMessage) -> UpdatedSummary:
        """Apply one persisted message to its conversation summary.

        Raises:
            NotFoundError: the conversation does not exist.
            InvalidRequestError: the message belongs to another conversation.
            ConflictError: the store could not complete the write; retry with the same message.
        """
        oid = to_object_id(conversation_id)
        if oid is None:
            raise conversation_not_found(conversation_id)
        if message.conversation_id != str(oid):
            logger.error(
                "summary_message_conversation_mismatch",
                conversation_id=str(oid),
                message_id=message.id,
                message_conversation_id=message.conversation_id,
            )
            raise InvalidRequestError(
                ApiErrorCode.E_MESSAGE_CONVERSATION_MISMATCH,
                f"Message {message.id} does not belong to conversation {oid}",
            )

        doc, applied = await self._conversation_repo.apply_message(oid, self._message_fields(message))
        if doc is None:
            raise conversation_not_found(oid)

        summary = ConversationSummary.from_document(doc)
        if applied:
            logger.info(
                "summary_updated",
                conversation_id=summary.id,
                message_id=message.id,
                last_message_timestamp=summary.last_message_timestamp.isoformat(),
            )
        else:
            logger.info(
                "summary_stale_message_realigned",
                conversation_id=summary.id,
                message_id=message.id,
                message_created_at=message.created_at.isoformat(),
            )
        return UpdatedSummary(summary=summary, applied=applied)

    async def _retry_conflicts(self, action: Callable[[], Awaitable[UpdatedSummary]], conversation_id, **context) -> UpdatedSummary:
        max_attempts = self._settings.summary_sync_max_retries
        attempt = 1
        while True:
            try:
                return await action()
            except ConflictError:
                if attempt >= max_attempts:
                    logger.error(
                        "summary_sync_retries_exhausted",
                        conversation_id=str(conversation_id),
                        attempts=attempt,
                        **context,
                    )
                    raise
                logger.warning(
                    "summary_sync_retry",
                    conversation_id=str(conversation_id),
                    attempt=attempt,
                    **context,
                )
                await self._sleep(self._settings.summary_sync_retry_backoff_ms * attempt / 1000.0)
                attempt += 1

    async def on_message_persisted(self, conversation_id: str, message: PersistedMessage) -> UpdatedSummary:
        """Inbound event from the message store: sync the summary, then broadcast it."""
        updated = await self._retry_conflicts(
            lambda: self.apply(conversation_id, message), conversation_id, message_id=message.id
        )
        if updated.applied and self._notifier is not None:
            await self._notifier.notify(updated.summary.id, updated)
        return updated

    async def on_message_deleted(self, conversation_id: str) -> UpdatedSummary:
        """Recompute after a delete, retrying lost races, then broadcast."""
        updated = await self._retry_conflicts(lambda: self.recompute(conversation_id), conversation_id)
        if self._notifier is not None:
            await self._notifier.notify(updated.summary.id, updated)
        return updated

    async def recompute(self, conversation_id: str) -> UpdatedSummary:
        """Rebuild the latest-message fields from the newest remaining message.

        Used after a message is deleted. Unlike ``apply`` this may move
        ``last_message_timestamp`` backward. Raises ConflictError if the
        summary changed between read and write.
        """
        if self._message_repo is None:
            raise RuntimeError("recompute requires a message repository")
        oid = to_object_id(conversation_id)
        if oid is None:
            raise conversation_not_found(conversation_id)
        current = await self._conversation_repo.get(oid)
        if current is None:
            raise conversation_not_found(oid)

        latest = await self._message_repo.latest_for_conversation(oid)
        if latest is None:
            fields = {field: None for field in MESSAGE_FIELDS}
        else:
            fields = self._message_fields(PersistedMessage.from_document(latest))

        doc = await self._conversation_repo.replace_message_fields(
            oid, current.get("last_message_ref"), fields
        )
        if doc is None:
            raise ConflictError(message=f"Summary for {oid} changed during recompute")
        logger.info(
            "summary_recomputed",
            conversation_id=str(oid),
            last_message_ref=str(fields["last_message_ref"]) if fields["last_message_ref"] is not None else None,
        )
        return UpdatedSummary(summary=ConversationSummary.from_document(doc))
