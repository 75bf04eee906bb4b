"""Notification service - management API plus the three rule schedulers."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI

from modules.notifications.analytics import AnalyticsClient
from modules.notifications.api import router
from modules.notifications.channels.factory import ChannelFactory
from modules.notifications.dispatcher import NotificationDispatcher
from modules.notifications.known_values import KnownValueTracker
from modules.notifications.store import NotificationStore
from modules.notifications.worker import NotificationJobs, cron_loop
from shared.config import get_settings
from shared.database import dispose_engine, get_session_factory
from shared.redis import close_redis, get_redis
from shared.schemas.common import HealthResponse

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Notification Service", version="1.0.0")
app.include_router(router)

_scheduler_tasks: dict[str, asyncio.Task] = {}
_schedulers_enabled = False


@app.on_event("startup")
async def startup():
    global _schedulers_enabled
    settings = get_settings()
    session_factory = get_session_factory()

    store = NotificationStore(session_factory)
    analytics = AnalyticsClient(
        settings.analytics_url,
        token=settings.analytics_token,
        timeout=settings.analytics_timeout_seconds,
    )
    channel_factory = ChannelFactory(timeout=settings.notification_timeout_seconds)
    dispatcher = NotificationDispatcher(
        store,
        channel_factory,
        max_per_hour=settings.notification_rate_limit_per_hour,
        rate_window_minutes=settings.notification_rate_limit_window_minutes,
    )
    known_values = KnownValueTracker(
        store,
        redis_client=await get_redis(),
        cache_ttl=settings.known_values_cache_ttl_seconds,
    )
    jobs = NotificationJobs(store, analytics, dispatcher, known_values)

    app.state.store = store
    app.state.analytics = analytics
    app.state.channel_factory = channel_factory
    app.state.dispatcher = dispatcher
    app.state.jobs = jobs

    _schedulers_enabled = settings.notifications_scheduler_enabled
    if _schedulers_enabled:
        for schedule in jobs.schedules(settings):
            _scheduler_tasks[schedule.name] = asyncio.create_task(
                cron_loop(schedule.name, schedule.cron, schedule.tick)
            )
    else:
        logger.info("notification_schedulers_disabled")

    logger.info("notification_service_ready", schedulers=sorted(_scheduler_tasks))


@app.on_event("shutdown")
async def shutdown():
    for task in _scheduler_tasks.values():
        if not task.done():
            task.cancel()
    for task in _scheduler_tasks.values():
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("notification_scheduler_exit_error", error=str(e))
    _scheduler_tasks.clear()

    analytics = getattr(app.state, "analytics", None)
    if analytics is not None:
        await analytics.aclose()
    channel_factory = getattr(app.state, "channel_factory", None)
    if channel_factory is not None:
        await channel_factory.aclose()

    await close_redis()
    await dispose_engine()
    logger.info("notification_service_shutdown")


def scheduler_states() -> dict[str, str]:
    if not _schedulers_enabled:
        return {"events": "disabled", "health": "disabled", "digest": "disabled"}
    return {
        name: "stopped" if task.done() else "running"
        for name, task in _scheduler_tasks.items()
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", schedulers=scheduler_states())
