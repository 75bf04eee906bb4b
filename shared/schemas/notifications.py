"""Notification schemas shared by the pipeline and the management API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# Closed set of rule types, grouped by the scheduler that evaluates them.
EVENT_RULE_TYPES = (
    "event_push",
    "threshold",
    "new_event_name",
    "new_app_version",
    "new_country",
)
HEALTH_RULE_TYPES = ("dead_app", "volume_anomaly")
DIGEST_RULE_TYPES = ("scheduled_digest",)
RULE_TYPES = EVENT_RULE_TYPES + HEALTH_RULE_TYPES + DIGEST_RULE_TYPES

# chat-bot, push-user and topic-push providers
CHANNEL_TYPES = ("telegram", "pushover", "ntfy")


class RuleWithChannels(BaseModel):
    """A stored rule joined with the ids of the channels it notifies."""

    id: str
    app_id: str
    rule_type: str
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    channel_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None


class ChannelResponse(BaseModel):
    id: str
    name: str
    channel_type: str
    config: dict[str, Any]
    enabled: bool
    created_at: datetime | None = None


class CreateChannelRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    channel_type: str = Field(max_length=20)
    config: dict[str, Any] = Field(default_factory=dict)


class UpdateChannelRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    config: dict[str, Any] = Field(default_factory=dict)  # empty keeps the stored config
    enabled: bool = True


class CreateRuleRequest(BaseModel):
    rule_type: str = Field(max_length=30)
    config: dict[str, Any] = Field(default_factory=dict)
    channel_ids: list[str] = Field(default_factory=list)


class UpdateRuleRequest(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    channel_ids: list[str] = Field(default_factory=list)


class NotificationLogEntry(BaseModel):
    """A log row joined with its channel name and rule type (when still present)."""

    id: str
    rule_id: str | None = None
    channel_id: str
    channel_name: str | None = None
    rule_type: str | None = None
    message: str
    sent_at: datetime
    dedup_key: str | None = None
