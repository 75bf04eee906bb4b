"""Shared test fixtures for the notification service test suite.

Provides mock database sessions, Redis clients, an in-memory store and
factory helpers so tests can run without Postgres, Redis or the query engine.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.notification_channel import NotificationChannel
from shared.schemas.notifications import RuleWithChannels


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the common patterns used in store code:
        session.execute(stmt) -> result
        session.add(obj)
        session.delete(obj)
        session.commit()
    """
    session = AsyncMock()
    session.add = MagicMock()
    # Default: execute returns a result with no rows
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalar_one.return_value = 0
    default_result.scalars.return_value.all.return_value = []
    default_result.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client with the set operations the cache uses."""
    redis = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())
    redis.sadd = AsyncMock()
    redis.expire = AsyncMock()
    redis.delete = AsyncMock()
    return redis


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryNotificationStore:
    """Dict-backed stand-in for NotificationStore used by pipeline tests."""

    def __init__(self):
        self.channels: dict[str, NotificationChannel] = {}
        self.rules: list[RuleWithChannels] = []
        self.known: dict[tuple[str, str], set[str]] = {}
        self.log: list[dict] = []
        self.fail_rule_query = False

    def add_channel(self, channel: NotificationChannel) -> NotificationChannel:
        self.channels[str(channel.id)] = channel
        return channel

    def add_rule(self, rule: RuleWithChannels) -> RuleWithChannels:
        self.rules.append(rule)
        return rule

    async def get_channel(self, app_id: str, channel_id: str) -> NotificationChannel | None:
        channel = self.channels.get(str(channel_id))
        if channel is None or channel.app_id != app_id:
            return None
        return channel

    async def get_enabled_rules_by_type(self, rule_types) -> list[RuleWithChannels]:
        if self.fail_rule_query:
            raise RuntimeError("database unavailable")
        return [r for r in self.rules if r.enabled and r.rule_type in rule_types]

    async def get_known_values(self, app_id: str, value_type: str) -> set[str]:
        return set(self.known.get((app_id, value_type), set()))

    async def insert_known_values(self, app_id: str, value_type: str, values) -> None:
        self.known.setdefault((app_id, value_type), set()).update(values)

    async def has_recent_notification(self, dedup_key: str, window_minutes: int) -> bool:
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        return any(e["dedup_key"] == dedup_key and e["sent_at"] > since for e in self.log)

    async def count_recent_notifications(self, app_id: str, window_minutes: int) -> int:
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        return sum(1 for e in self.log if e["app_id"] == app_id and e["sent_at"] > since)

    async def log_notification(self, app_id, rule_id, channel_id, message, dedup_key) -> None:
        self.log.append(
            {
                "app_id": app_id,
                "rule_id": rule_id,
                "channel_id": channel_id,
                "message": message,
                "dedup_key": dedup_key,
                "sent_at": datetime.now(timezone.utc),
            }
        )


@pytest.fixture
def memory_store():
    return InMemoryNotificationStore()


# ---------------------------------------------------------------------------
# Channel factory double
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_channel_factory():
    """ChannelFactory stand-in whose adapters record every send.

    ``factory.sent`` collects ``(channel_type, title, message)`` tuples and
    ``factory.failing`` holds channel types whose send raises.
    """
    factory = MagicMock()
    factory.sent = []
    factory.failing = set()

    def _create(channel):
        sender = MagicMock()

        async def _send(title, message):
            if channel.channel_type in factory.failing:
                raise RuntimeError(f"{channel.channel_type} is down")
            factory.sent.append((channel.channel_type, title, message))

        sender.send = AsyncMock(side_effect=_send)
        return sender

    factory.create = MagicMock(side_effect=_create)
    return factory


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def app_id():
    """Return a stable app id for tests."""
    return "app-" + uuid.uuid4().hex[:8]


@pytest.fixture
def make_channel():
    """Factory for creating NotificationChannel instances."""

    def _make(
        app_id: str = "app-1",
        channel_type: str = "ntfy",
        config: dict | None = None,
        enabled: bool = True,
        name: str = "Alerts",
    ) -> NotificationChannel:
        now = datetime.now(timezone.utc)
        return NotificationChannel(
            id=uuid.uuid4(),
            app_id=app_id,
            name=name,
            channel_type=channel_type,
            config=config if config is not None else {"topic": "alerts"},
            enabled=enabled,
            created_at=now,
            modified_at=now,
        )

    return _make


@pytest.fixture
def make_rule():
    """Factory for creating RuleWithChannels instances."""

    def _make(
        rule_type: str = "event_push",
        app_id: str = "app-1",
        config: dict | None = None,
        channel_ids: list[str] | None = None,
        enabled: bool = True,
        rule_id: str | None = None,
    ) -> RuleWithChannels:
        return RuleWithChannels(
            id=rule_id or str(uuid.uuid4()),
            app_id=app_id,
            rule_type=rule_type,
            config=config or {},
            enabled=enabled,
            channel_ids=channel_ids or [],
            created_at=datetime.now(timezone.utc),
        )

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_execute_side_effect(*results):
    """Create an execute side_effect that returns different results per call.

    Usage::

        session.execute = AsyncMock(
            side_effect=make_execute_side_effect(result1, result2)
        )

    Each result should be a MagicMock with the appropriate return values
    (e.g. scalar_one_or_none, scalars().all()).
    """
    call_idx = 0

    async def _side_effect(stmt, *args, **kwargs):
        nonlocal call_idx
        if call_idx < len(results):
            r = results[call_idx]
            call_idx += 1
            return r
        # Fallback: return empty result
        fallback = MagicMock()
        fallback.scalar_one_or_none.return_value = None
        fallback.scalar_one.return_value = 0
        fallback.scalars.return_value.all.return_value = []
        fallback.all.return_value = []
        return fallback

    return _side_effect
