from typing import Any, Dict, List, Optional

from chatsync.errors import ApiErrorCode, ForbiddenError, NotFoundError
from chatsync.logging import get_logger
from chatsync.repositories.conversation_repository import ConversationRepository, to_object_id
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.conversation import ConversationPage, ConversationSummary, UpdatedSummary
from chatsync.schemas.message import PersistedMessage
from chatsync.services.notifier import ChangeNotifier
from chatsync.services.summary_sync import SummarySynchronizer, conversation_not_found

logger = get_logger(__name__)


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        synchronizer: SummarySynchronizer,
        notifier: ChangeNotifier,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._synchronizer = synchronizer
        self._notifier = notifier

    async def _require_participant(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None:
            raise conversation_not_found(conversation_id)
        if user_id not in convo.get("participants", []):
            raise ForbiddenError(message="Not a participant of this conversation")
        return convo

    async def create_conversation(self, creator_id: str, participants: List[str], name: Optional[str] = None) -> ConversationSummary:
        doc = await self._conversation_repo.create([creator_id, *participants], name=name)
        return ConversationSummary.from_document(doc)

    async def send_message(
        self,
        sender_id: str,
        conversation_id: str,
        content: str,
        message_type: str = "text",
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        convo = await self._require_participant(conversation_id, sender_id)
        saved = await self._message_repo.save_message(
            conversation_id=convo["_id"],
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            client_message_id=client_message_id,
        )
        message = PersistedMessage.from_document(saved)
        updated = await self._synchronizer.on_message_persisted(str(convo["_id"]), message)
        return {
            "ack": {
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "client_message_id": client_message_id,
                "created_at": message.created_at.isoformat(),
            },
            "conversation": updated.summary.model_dump(mode="json"),
        }

    async def rename_conversation(self, user_id: str, conversation_id: str, name: str) -> ConversationSummary:
        convo = await self._require_participant(conversation_id, user_id)
        doc = await self._conversation_repo.update_metadata(convo["_id"], {"name": name})
        if doc is None:
            raise conversation_not_found(conversation_id)
        updated = UpdatedSummary(summary=ConversationSummary.from_document(doc))
        await self._notifier.notify(updated.summary.id, updated)
        return updated.summary

    async def delete_message(self, user_id: str, conversation_id: str, message_id: str) -> ConversationSummary:
        convo = await self._require_participant(conversation_id, user_id)
        oid = to_object_id(message_id)
        message = await self._message_repo.get_message(oid) if oid is not None else None
        if message is None or message["conversation_id"] != convo["_id"]:
            raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, f"Message {message_id} not found")
        if message["sender_id"] != user_id:
            raise ForbiddenError(message="Only the sender can delete a message")
        await self._message_repo.delete_message(oid)
        logger.info("message_deleted", conversation_id=str(convo["_id"]), message_id=message_id)
        updated = await self._synchronizer.on_message_deleted(str(convo["_id"]))
        return updated.summary

    async def list_conversations(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> ConversationPage:
        items, next_cursor = await self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)
        return ConversationPage(
            items=[ConversationSummary.from_document(it) for it in items],
            next_cursor=next_cursor,
        )
