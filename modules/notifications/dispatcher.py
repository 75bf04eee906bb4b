"""Notification dispatcher - dedup, rate limiting and per-channel delivery.

Dedup and the rate limit are both read-then-write checks against the
notification log.  Two concurrent firings for the same app or dedup key can
both pass before either writes its row, so delivery is approximately
at-most-once per window, not exactly-once.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from modules.notifications.channels.factory import ChannelFactory
from shared.models.notification_channel import NotificationChannel
from shared.schemas.notifications import RuleWithChannels

logger = structlog.get_logger()

MAX_NOTIFICATIONS_PER_HOUR = 200
RATE_LIMIT_WINDOW_MINUTES = 60

TEST_TITLE = "Test Notification"
TEST_MESSAGE = (
    "This is a test notification. If you see this, your channel is configured correctly!"
)
TEST_LOG_MESSAGE = "Test notification"


class DispatchStore(Protocol):
    async def has_recent_notification(self, dedup_key: str, window_minutes: int) -> bool: ...

    async def count_recent_notifications(self, app_id: str, window_minutes: int) -> int: ...

    async def get_channel(self, app_id: str, channel_id: str) -> NotificationChannel | None: ...

    async def log_notification(
        self,
        app_id: str,
        rule_id: str | None,
        channel_id: str,
        message: str,
        dedup_key: str | None,
    ) -> None: ...


class NotificationDispatcher:
    """Delivers a rule firing to the rule's channels."""

    def __init__(
        self,
        store: DispatchStore,
        channel_factory: ChannelFactory,
        max_per_hour: int = MAX_NOTIFICATIONS_PER_HOUR,
        rate_window_minutes: int = RATE_LIMIT_WINDOW_MINUTES,
    ):
        self.store = store
        self.channel_factory = channel_factory
        self.max_per_hour = max_per_hour
        self.rate_window_minutes = rate_window_minutes

    async def dispatch(
        self,
        rule: RuleWithChannels,
        title: str,
        message: str,
        dedup_key: str | None = None,
        dedup_window_minutes: int = 60,
    ) -> None:
        """Deliver one firing.  Never raises; failures are logged and dropped."""
        try:
            await self._dispatch(rule, title, message, dedup_key, dedup_window_minutes)
        except Exception as e:
            logger.error(
                "dispatch_failed",
                rule_id=rule.id,
                app_id=rule.app_id,
                dedup_key=dedup_key,
                error=str(e),
                exc_info=True,
            )

    async def _dispatch(
        self,
        rule: RuleWithChannels,
        title: str,
        message: str,
        dedup_key: str | None,
        dedup_window_minutes: int,
    ) -> None:
        if dedup_key and await self.store.has_recent_notification(dedup_key, dedup_window_minutes):
            logger.debug("dispatch_deduplicated", rule_id=rule.id, dedup_key=dedup_key)
            return

        recent = await self.store.count_recent_notifications(rule.app_id, self.rate_window_minutes)
        if recent >= self.max_per_hour:
            logger.warning(
                "dispatch_rate_limited",
                rule_id=rule.id,
                app_id=rule.app_id,
                recent=recent,
                limit=self.max_per_hour,
            )
            return

        for channel_id in rule.channel_ids:
            try:
                channel = await self.store.get_channel(rule.app_id, channel_id)
                if channel is None or not channel.enabled:
                    continue

                sender = self.channel_factory.create(channel)
                await sender.send(title, message)

                await self.store.log_notification(rule.app_id, rule.id, channel_id, message, dedup_key)
                logger.info(
                    "notification_sent",
                    rule_id=rule.id,
                    rule_type=rule.rule_type,
                    channel_id=channel_id,
                )
            except Exception as e:
                logger.error(
                    "notification_delivery_failed",
                    rule_id=rule.id,
                    channel_id=channel_id,
                    error=str(e),
                )

    async def send_test(self, app_id: str, channel: NotificationChannel) -> None:
        """Send a fixed message to one channel, bypassing dedup and rate limits.

        Errors propagate to the caller.
        """
        sender = self.channel_factory.create(channel)
        await sender.send(TEST_TITLE, TEST_MESSAGE)
        await self.store.log_notification(app_id, None, str(channel.id), TEST_LOG_MESSAGE, None)
        logger.info("test_notification_sent", app_id=app_id, channel_id=str(channel.id))
