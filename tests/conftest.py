"""
Shared fixtures for the chatmod test suite.
Everything runs against the in-memory record store with a controllable clock.
"""

import pytest

from chatmod.lib.config import Settings
from chatmod.lib.record_store import InMemoryCounterStore, InMemoryRecordStore
from chatmod.lib.timeutils import MS_PER_HOUR
from chatmod.models.message import Message
from chatmod.services.flag_store import FlagStore
from chatmod.services.reconciler import IntentLog
from chatmod.services.user_manager import UserManager

# Wednesday 2024-01-10 12:00:00 UTC
FIXED_NOW_MS = 1704888000000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = FIXED_NOW_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def seconds(self) -> float:
        return self.now_ms / 1000


class FakeBroker:
    """Records moderator alerts instead of talking to Kafka."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.alerts = []
        self.closed = False

    def publish_moderation_alert(self, alert):
        self.alerts.append(alert)
        return self.deliver

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def counters(clock):
    return InMemoryCounterStore(clock=clock.seconds)


@pytest.fixture
def intent_log(store, clock):
    return IntentLog(store, clock=clock)


@pytest.fixture
def flag_store(store, intent_log, clock):
    return FlagStore(store, intent_log, clock=clock)


@pytest.fixture
def user_manager(store, intent_log, clock):
    return UserManager(store, intent_log, admin_emails=["admin@example.com"], clock=clock)


@pytest.fixture
def test_settings():
    return Settings(admin_emails=["admin@example.com"])


@pytest.fixture
def broker():
    return FakeBroker()


def make_message(message_id="m1", text="hello there", author_id="u1", timestamp_ms=FIXED_NOW_MS, **kwargs):
    return Message(id=message_id, text=text, author_id=author_id, timestamp_ms=timestamp_ms, **kwargs)


async def seed_message(store, message_id, text, author_id="u1", timestamp_ms=FIXED_NOW_MS, **kwargs):
    message = make_message(message_id, text, author_id, timestamp_ms, **kwargs)
    await store.write(f"messages/{message_id}", message.model_dump(mode="json"))
    return message


def hours_ago(hours: float, now_ms: int = FIXED_NOW_MS) -> int:
    return int(now_ms - hours * MS_PER_HOUR)
