"""Pytest fixtures for chatsync tests.

Storage runs against an in-memory mongomock database per test; realtime
delivery is captured by recording fakes instead of sockets.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from bson import ObjectId

from chatsync.config import Settings
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.message import PersistedMessage
from chatsync.services.notifier import ChangeNotifier
from chatsync.services.summary_sync import SummarySynchronizer
from chatsync.utils.realtime_bus import NoopBus
from chatsync.utils.websocket_manager import ConnectionManager
from tests.support.mongo import AsyncMockDatabase

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingManager(ConnectionManager):
    """Connection manager that records payloads per user instead of writing to sockets."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: List[tuple] = []

    async def send_personal_message(self, receiver_id: str, message: str) -> int:
        self.sent.append((receiver_id, json.loads(message)))
        return 1


class RecordingBus:

    enabled = True

    def __init__(self) -> None:
        self.published: List[tuple] = []

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, json.loads(message)))


def make_message(conversation_id, created_at: datetime, content: str = "hello", sender_id: str = "alice", message_id=None) -> PersistedMessage:
    return PersistedMessage(
        id=str(message_id or ObjectId()),
        conversation_id=str(conversation_id),
        sender_id=sender_id,
        content=content,
        created_at=created_at,
    )


def at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


@pytest.fixture
def db() -> AsyncMockDatabase:
    return AsyncMockDatabase()


@pytest.fixture
def settings() -> Settings:
    return Settings(SUMMARY_SYNC_MAX_RETRIES=3, SUMMARY_SYNC_RETRY_BACKOFF_MS=0, PREVIEW_MAX_LENGTH=20)


@pytest.fixture
async def conversation_repo(db) -> ConversationRepository:
    repo = ConversationRepository(db)
    await repo.ensure_indexes()
    return repo


@pytest.fixture
def message_repo(db) -> MessageRepository:
    return MessageRepository(db)


@pytest.fixture
def recording_manager() -> RecordingManager:
    return RecordingManager()


@pytest.fixture
def notifier(recording_manager) -> ChangeNotifier:
    return ChangeNotifier(recording_manager, bus=NoopBus())


@pytest.fixture
def synchronizer(conversation_repo, message_repo, notifier, settings) -> SummarySynchronizer:
    return SummarySynchronizer(conversation_repo, message_repo, notifier, settings=settings)


@pytest.fixture
async def conversation(conversation_repo):
    return await conversation_repo.create(["alice", "bob"], name="general")
