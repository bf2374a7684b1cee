import asyncio
import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatsync.errors import ApiError
from chatsync.logging import get_logger
from chatsync.schemas.message import MessageCreate
from chatsync.services.chat_service import ChatService
from chatsync.services.notifier import user_channel
from chatsync.utils.dependencies import get_chat_service
from chatsync.utils.realtime_bus import get_bus
from chatsync.utils.websocket_manager import manager


router = APIRouter(tags=["chat"])
logger = get_logger(__name__)


def _error_frame(code: str, message: str) -> str:
    return json.dumps({"type": "error", "code": code, "message": message})


async def _handle_frame(websocket: WebSocket, user_id: str, raw: str, service: ChatService) -> None:
    # Expect {"type": "message", "conversation_id": str, "content": str, "message_type"?: "text|file", "client_message_id"?: str}
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_text(_error_frame("E_INVALID_REQUEST", "Frames must be JSON"))
        return
    if not isinstance(msg, dict) or msg.get("type") != "message" or not msg.get("conversation_id"):
        await websocket.send_text(_error_frame("E_INVALID_REQUEST", "Invalid message payload"))
        return
    try:
        body = MessageCreate(
            content=msg.get("content", ""),
            type=msg.get("message_type", "text"),
            client_message_id=msg.get("client_message_id"),
        )
    except ValidationError:
        await websocket.send_text(_error_frame("E_INVALID_REQUEST", "Invalid message payload"))
        return
    try:
        ack = await service.send_message(
            user_id,
            msg["conversation_id"],
            body.content,
            message_type=body.type,
            client_message_id=body.client_message_id,
        )
    except ApiError as exc:
        await websocket.send_text(_error_frame(exc.code.value, exc.message))
        return
    await websocket.send_text(json.dumps({"type": "ack", **ack}))


@router.websocket("/ws/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, service: ChatService = Depends(get_chat_service)):
    await manager.connect(user_id, websocket)
    bus = await get_bus()
    subscriber = None
    sub_task = None
    # With Redis, summary events reach this session through the user's channel
    if getattr(bus, "enabled", False):
        subscriber = await bus.subscribe(user_channel(user_id), websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())
    logger.info("websocket_connected", user_id=user_id, bus_enabled=getattr(bus, "enabled", False))

    try:
        while True:
            data = await websocket.receive_text()
            await _handle_frame(websocket, user_id, data, service)
    except WebSocketDisconnect:
        logger.info("websocket_disconnected", user_id=user_id)
    finally:
        manager.disconnect(user_id, websocket)
        if sub_task is not None:
            sub_task.cancel()
            (outcome,) = await asyncio.gather(sub_task, return_exceptions=True)
            if isinstance(outcome, Exception):
                logger.warning("realtime_subscription_failed", user_id=user_id, error=repr(outcome))
        if subscriber is not None:
            await subscriber.cancel()
