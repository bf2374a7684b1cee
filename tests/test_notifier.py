"""Tests for summary change broadcasting."""

import json

from redis.exceptions import ConnectionError as RedisConnectionError

from chatsync.schemas.conversation import ConversationSummary, UpdatedSummary
from chatsync.services.notifier import ChangeNotifier, summary_event
from chatsync.utils.realtime_bus import NoopBus
from chatsync.utils.websocket_manager import ConnectionManager
from tests.conftest import RecordingBus, T0


def updated_summary(participants=("alice", "bob")) -> UpdatedSummary:
    summary = ConversationSummary(
        id="6650f0f0f0f0f0f0f0f0f0f0",
        participants=list(participants),
        name="general",
        sequence=7,
        last_message_ref="6650f0f0f0f0f0f0f0f0f0f1",
        last_message_text="hi",
        last_message_timestamp=T0,
        last_message_sender="alice",
        last_message_type="text",
        created_at=T0,
        updated_at=T0,
    )
    return UpdatedSummary(summary=summary)


class FakeSocket:

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.frames = []

    async def accept(self) -> None:
        return

    async def send_text(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(message)


class TestSummaryEvent:

    def test_event_carries_synchronizer_values(self):
        updated = updated_summary()

        event = json.loads(summary_event(updated))

        assert event["type"] == "conversation_updated"
        assert event["conversation"]["last_message_timestamp"] == event["conversation"]["updated_at"]
        assert event["conversation"] == updated.summary.model_dump(mode="json")


class TestChangeNotifier:

    async def test_publishes_to_each_participant_channel(self):
        bus = RecordingBus()
        notifier = ChangeNotifier(ConnectionManager(), bus=bus)

        await notifier.notify("c1", updated_summary())

        assert [channel for channel, _ in bus.published] == ["user:alice", "user:bob"]

    async def test_local_sessions_without_bus(self):
        manager = ConnectionManager()
        alice_phone, alice_laptop, dead = FakeSocket(), FakeSocket(), FakeSocket(fail=True)
        await manager.connect("alice", alice_phone)
        await manager.connect("alice", alice_laptop)
        await manager.connect("bob", dead)
        notifier = ChangeNotifier(manager, bus=NoopBus())

        await notifier.notify("c1", updated_summary())

        assert len(alice_phone.frames) == 1
        assert alice_phone.frames == alice_laptop.frames
        assert "bob" not in manager.active_connections

    async def test_bus_failure_does_not_raise(self):
        class BrokenBus(RecordingBus):
            async def publish(self, channel, message):
                raise RedisConnectionError("down")

        notifier = ChangeNotifier(ConnectionManager(), bus=BrokenBus())

        await notifier.notify("c1", updated_summary())
