"""Management endpoints for notification channels, rules and the log."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from modules.notifications.analytics import AnalyticsClient
from modules.notifications.dispatcher import NotificationDispatcher
from modules.notifications.store import NotificationStore
from shared.auth import require_service_auth
from shared.models.notification_channel import NotificationChannel
from shared.schemas.notifications import (
    CHANNEL_TYPES,
    RULE_TYPES,
    ChannelResponse,
    CreateChannelRequest,
    CreateRuleRequest,
    NotificationLogEntry,
    RuleWithChannels,
    UpdateChannelRequest,
    UpdateRuleRequest,
)

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/apps/{app_id}",
    tags=["notifications"],
    dependencies=[Depends(require_service_auth)],
)

EVENT_NAMES_LOOKBACK = timedelta(days=30)
LOG_LIMIT = 50


def get_store(request: Request) -> NotificationStore:
    return request.app.state.store


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_analytics(request: Request) -> AnalyticsClient:
    return request.app.state.analytics


def _channel_response(channel: NotificationChannel) -> ChannelResponse:
    return ChannelResponse(
        id=str(channel.id),
        name=channel.name,
        channel_type=channel.channel_type,
        config=channel.config or {},
        enabled=channel.enabled,
        created_at=channel.created_at,
    )


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@router.get("/notification-channels", response_model=list[ChannelResponse])
async def list_channels(app_id: str, store: NotificationStore = Depends(get_store)):
    channels = await store.list_channels(app_id)
    return [_channel_response(c) for c in channels]


@router.post("/notification-channels", response_model=ChannelResponse)
async def create_channel(
    app_id: str,
    body: CreateChannelRequest,
    store: NotificationStore = Depends(get_store),
):
    if body.channel_type not in CHANNEL_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"channel_type must be one of: {', '.join(CHANNEL_TYPES)}",
        )
    channel = await store.create_channel(app_id, body.name, body.channel_type, body.config)
    return _channel_response(channel)


@router.put("/notification-channels/{channel_id}", response_model=ChannelResponse)
async def update_channel(
    app_id: str,
    channel_id: str,
    body: UpdateChannelRequest,
    store: NotificationStore = Depends(get_store),
):
    existing = await store.get_channel(app_id, channel_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Channel not found")

    # An empty config means "unchanged" so clients need not resend secrets
    config = body.config or existing.config
    channel = await store.update_channel(app_id, channel_id, body.name, config, body.enabled)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return _channel_response(channel)


@router.delete("/notification-channels/{channel_id}")
async def delete_channel(app_id: str, channel_id: str, store: NotificationStore = Depends(get_store)) -> dict:
    if not await store.delete_channel(app_id, channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {}


@router.post("/notification-channels/{channel_id}/test")
async def test_channel(
    app_id: str,
    channel_id: str,
    store: NotificationStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    """Send a fixed test message to one channel."""
    channel = await store.get_channel(app_id, channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    try:
        await dispatcher.send_test(app_id, channel)
    except Exception as e:
        logger.warning("test_notification_failed", app_id=app_id, channel_id=channel_id, error=str(e))
        raise HTTPException(status_code=502, detail=f"Test notification failed: {e}")
    return {}


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@router.get("/notification-rules", response_model=list[RuleWithChannels])
async def list_rules(app_id: str, store: NotificationStore = Depends(get_store)):
    return await store.list_rules(app_id)


@router.post("/notification-rules", response_model=RuleWithChannels)
async def create_rule(
    app_id: str,
    body: CreateRuleRequest,
    store: NotificationStore = Depends(get_store),
):
    if body.rule_type not in RULE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"rule_type must be one of: {', '.join(RULE_TYPES)}",
        )
    return await store.create_rule(app_id, body.rule_type, body.config, body.channel_ids)


@router.put("/notification-rules/{rule_id}", response_model=RuleWithChannels)
async def update_rule(
    app_id: str,
    rule_id: str,
    body: UpdateRuleRequest,
    store: NotificationStore = Depends(get_store),
):
    rule = await store.update_rule(app_id, rule_id, body.config, body.enabled, body.channel_ids)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.delete("/notification-rules/{rule_id}")
async def delete_rule(app_id: str, rule_id: str, store: NotificationStore = Depends(get_store)) -> dict:
    if not await store.delete_rule(app_id, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return {}


# ---------------------------------------------------------------------------
# Log and event names
# ---------------------------------------------------------------------------


@router.get("/notification-log", response_model=list[NotificationLogEntry])
async def get_log(app_id: str, store: NotificationStore = Depends(get_store)):
    return await store.get_recent_logs(app_id, limit=LOG_LIMIT)


@router.get("/event-names")
async def get_event_names(app_id: str, analytics: AnalyticsClient = Depends(get_analytics)) -> list[str]:
    """Distinct event names the app sent in the last 30 days."""
    since = datetime.now(timezone.utc) - EVENT_NAMES_LOOKBACK
    try:
        rows = await analytics.distinct_values([app_id], "event_name", since)
    except Exception as e:
        logger.warning("event_names_query_failed", app_id=app_id, error=str(e))
        raise HTTPException(status_code=502, detail="Event names are unavailable")
    return sorted({row.value for row in rows})
