from typing import Dict, List

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from chatsync.logging import get_logger

logger = get_logger(__name__)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        if user_id not in self.active_connections:
            self.active_connections[user_id] = []
        self.active_connections[user_id].append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        if user_id in self.active_connections:
            try:
                self.active_connections[user_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

    async def send_personal_message(self, receiver_id: str, message: str) -> int:
        """Send to every open session of a user; returns how many received it."""
        delivered = 0
        for conn in list(self.active_connections.get(receiver_id, [])):
            try:
                await conn.send_text(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.info("websocket_send_failed", user_id=receiver_id, error=str(exc))
                self.disconnect(receiver_id, conn)
                continue
            delivered += 1
        return delivered


manager = ConnectionManager()
