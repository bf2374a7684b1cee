import json

from redis.exceptions import RedisError

from chatsync.logging import get_logger
from chatsync.schemas.conversation import UpdatedSummary
from chatsync.utils.realtime_bus import get_bus
from chatsync.utils.websocket_manager import ConnectionManager

logger = get_logger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def summary_event(updated: UpdatedSummary) -> str:
    return json.dumps({
        "type": "conversation_updated",
        "conversation": updated.summary.model_dump(mode="json"),
    })


class ChangeNotifier:
    """Broadcasts synchronizer output to every participant's sessions.

    The payload is the summary exactly as the synchronizer returned it, so
    realtime recipients and later listings agree.
    """

    def __init__(self, manager: ConnectionManager, bus=None) -> None:
        self._manager = manager
        self._bus = bus

    async def _get_bus(self):
        if self._bus is None:
            self._bus = await get_bus()
        return self._bus

    async def notify(self, conversation_id: str, updated: UpdatedSummary) -> None:
        payload = summary_event(updated)
        bus = await self._get_bus()
        for user_id in updated.summary.participants:
            try:
                if getattr(bus, "enabled", False):
                    await bus.publish(user_channel(user_id), payload)
                else:
                    await self._manager.send_personal_message(user_id, payload)
            except RedisError as exc:
                logger.warning(
                    "summary_notify_failed",
                    conversation_id=conversation_id,
                    user_id=user_id,
                    error=str(exc),
                )
        logger.debug(
            "summary_notified",
            conversation_id=conversation_id,
            recipients=len(updated.summary.participants),
        )
