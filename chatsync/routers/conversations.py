from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatsync.schemas.conversation import ConversationCreate, ConversationRename
from chatsync.schemas.message import MessageCreate
from chatsync.services.chat_service import ChatService
from chatsync.utils.dependencies import get_chat_service, get_current_user_id


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("")
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    page = await service.list_conversations(user_id, limit=limit, cursor=cursor)
    return page.model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(body: ConversationCreate, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    summary = await service.create_conversation(user_id, body.participants, name=body.name)
    return summary.model_dump(mode="json")


@router.patch("/{conversation_id}")
async def rename_conversation(conversation_id: str, body: ConversationRename, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    summary = await service.rename_conversation(user_id, conversation_id, body.name)
    return summary.model_dump(mode="json")


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: MessageCreate, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(
        user_id,
        conversation_id,
        body.content,
        message_type=body.type,
        client_message_id=body.client_message_id,
    )


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(conversation_id: str, message_id: str, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    summary = await service.delete_message(user_id, conversation_id, message_id)
    return summary.model_dump(mode="json")
