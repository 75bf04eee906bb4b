"""Pydantic schemas for the notification service."""

from shared.schemas.analytics import (
    DailyVolume,
    DigestSummary,
    DistinctValue,
    EventCount,
    LastEvent,
)
from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    CHANNEL_TYPES,
    RULE_TYPES,
    NotificationLogEntry,
    RuleWithChannels,
)

__all__ = [
    "CHANNEL_TYPES",
    "DailyVolume",
    "DigestSummary",
    "DistinctValue",
    "EventCount",
    "HealthResponse",
    "LastEvent",
    "NotificationLogEntry",
    "RULE_TYPES",
    "RuleWithChannels",
]
