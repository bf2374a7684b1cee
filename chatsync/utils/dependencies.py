from fastapi import Depends, Header

from chatsync.database.connection import mongo_db_dependency
from chatsync.errors import ApiError, ApiErrorCode
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.services.chat_service import ChatService
from chatsync.services.notifier import ChangeNotifier
from chatsync.services.summary_sync import SummarySynchronizer
from chatsync.utils.websocket_manager import manager


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity handed over by the upstream auth layer."""
    if not x_user_id:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Missing X-User-Id header")
    return x_user_id


def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    msg_repo = MessageRepository(db)
    convo_repo = ConversationRepository(db)
    notifier = ChangeNotifier(manager)
    synchronizer = SummarySynchronizer(convo_repo, msg_repo, notifier)
    return ChatService(msg_repo, convo_repo, synchronizer, notifier)
