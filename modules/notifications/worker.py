"""Notification schedulers - periodic rule evaluation loops.

Three independent loops run on their own cron cadence:

- events  (every 5 min):    event_push, threshold, new_event_name,
                            new_app_version, new_country
- health  (:15 and :45):    dead_app, volume_anomaly
- digest  (daily 08:00 UTC): scheduled_digest

A loop runs its ticks strictly one after another; a slow tick only delays
its own next tick.  Failures are contained at three levels: per rule, per
rule-type batch query, and per tick.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from croniter import croniter

from modules.notifications.analytics import AnalyticsClient
from modules.notifications.dispatcher import NotificationDispatcher
from modules.notifications.evaluators import (
    VOLUME_LOOKBACK_DAYS,
    Firing,
    digest_due,
    digest_window,
    evaluate_dead_app,
    evaluate_digest,
    evaluate_event_push,
    evaluate_new_values,
    evaluate_threshold,
    evaluate_volume_anomaly,
    find_new_values,
    threshold_period_start,
)
from modules.notifications.known_values import NEW_VALUE_DIMENSIONS, KnownValueTracker
from modules.notifications.rule_configs import (
    DeadAppConfig,
    DigestConfig,
    EventPushConfig,
    ThresholdConfig,
    VolumeAnomalyConfig,
    parse_rule_config,
)
from modules.notifications.store import NotificationStore
from shared.config import Settings
from shared.schemas.analytics import DailyVolume
from shared.schemas.notifications import (
    DIGEST_RULE_TYPES,
    EVENT_RULE_TYPES,
    HEALTH_RULE_TYPES,
    RuleWithChannels,
)

logger = structlog.get_logger()

# Look-back for event_push and new_* rules; matches the events cadence
RECENT_WINDOW = timedelta(minutes=5)

# Pause before retrying after the loop itself failed (not a tick)
_LOOP_ERROR_BACKOFF_SECONDS = 60


def next_fire_time(cron_expr: str, now: datetime, last_fire: datetime | None = None) -> datetime:
    """Next cron fire time strictly after both ``now`` and ``last_fire``.

    A tick can wake slightly before its wall-clock boundary, so the boundary
    it fired for must not be returned again.
    """
    base = now if last_fire is None else max(now, last_fire)
    return croniter(cron_expr, base).get_next(datetime)


def seconds_until_next(cron_expr: str, now: datetime) -> float:
    """Seconds from ``now`` to the next cron fire time (UTC)."""
    return max((next_fire_time(cron_expr, now) - now).total_seconds(), 0.0)


async def cron_loop(name: str, cron_expr: str, tick: Callable[[], Awaitable[None]]) -> None:
    """Run ``tick`` on every cron fire time until cancelled."""
    if not croniter.is_valid(cron_expr):
        raise ValueError(f"Invalid cron expression for {name} scheduler: {cron_expr!r}")

    logger.info("notification_scheduler_started", scheduler=name, cron=cron_expr)
    last_fire: datetime | None = None
    try:
        while True:
            try:
                now = datetime.now(timezone.utc)
                fire_at = next_fire_time(cron_expr, now, last_fire)
                await asyncio.sleep(max((fire_at - now).total_seconds(), 0.0))
                last_fire = fire_at

                logger.info("notification_tick_started", scheduler=name)
                try:
                    await tick()
                except Exception as e:
                    logger.error("notification_tick_error", scheduler=name, error=str(e), exc_info=True)
                logger.info("notification_tick_complete", scheduler=name)
            except Exception as e:
                logger.error("notification_scheduler_error", scheduler=name, error=str(e), exc_info=True)
                await asyncio.sleep(_LOOP_ERROR_BACKOFF_SECONDS)
    finally:
        logger.info("notification_scheduler_stopped", scheduler=name)


@dataclass(frozen=True)
class Schedule:
    name: str
    cron: str
    tick: Callable[[], Awaitable[None]]


class NotificationJobs:
    """Evaluates enabled rules and hands firings to the dispatcher."""

    def __init__(
        self,
        store: NotificationStore,
        analytics: AnalyticsClient,
        dispatcher: NotificationDispatcher,
        known_values: KnownValueTracker,
    ):
        self.store = store
        self.analytics = analytics
        self.dispatcher = dispatcher
        self.known_values = known_values
        self._handlers: dict[str, Callable[[str, list[RuleWithChannels], datetime], Awaitable[None]]] = {
            "event_push": self._process_event_push,
            "threshold": self._process_threshold,
            "new_event_name": self._process_new_values,
            "new_app_version": self._process_new_values,
            "new_country": self._process_new_values,
            "dead_app": self._process_dead_app,
            "volume_anomaly": self._process_volume_anomaly,
            "scheduled_digest": self._process_digest,
        }

    def schedules(self, settings: Settings) -> list[Schedule]:
        return [
            Schedule("events", settings.event_rules_cron, self.run_event_rules),
            Schedule("health", settings.health_rules_cron, self.run_health_rules),
            Schedule("digest", settings.digest_rules_cron, self.run_digest_rules),
        ]

    async def run_event_rules(self, now: datetime | None = None) -> None:
        await self.run_tick("events", EVENT_RULE_TYPES, now)

    async def run_health_rules(self, now: datetime | None = None) -> None:
        await self.run_tick("health", HEALTH_RULE_TYPES, now)

    async def run_digest_rules(self, now: datetime | None = None) -> None:
        await self.run_tick("digest", DIGEST_RULE_TYPES, now)

    async def run_tick(
        self,
        scheduler: str,
        rule_types: Sequence[str],
        now: datetime | None = None,
    ) -> None:
        """Evaluate every enabled rule of ``rule_types`` once."""
        now = now or datetime.now(timezone.utc)
        rules = await self.store.get_enabled_rules_by_type(rule_types)
        if not rules:
            return

        by_type: dict[str, list[RuleWithChannels]] = {}
        for rule in rules:
            by_type.setdefault(rule.rule_type, []).append(rule)

        logger.info(
            "notification_rules_loaded",
            scheduler=scheduler,
            rule_count=len(rules),
            rule_types=sorted(by_type),
        )

        for rule_type in rule_types:
            type_rules = by_type.get(rule_type)
            if not type_rules:
                continue
            try:
                await self._handlers[rule_type](rule_type, type_rules, now)
            except Exception as e:
                # A failed batch query skips this rule type until the next tick
                logger.error(
                    "rule_batch_error",
                    scheduler=scheduler,
                    rule_type=rule_type,
                    rule_count=len(type_rules),
                    error=str(e),
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fire(self, rule: RuleWithChannels, firing: Firing | None) -> None:
        if firing is None:
            return
        await self.dispatcher.dispatch(
            rule,
            firing.title,
            firing.message,
            firing.dedup_key,
            firing.dedup_window_minutes,
        )

    @staticmethod
    def _log_rule_error(rule: RuleWithChannels, error: Exception) -> None:
        logger.error(
            "rule_evaluation_error",
            rule_id=rule.id,
            rule_type=rule.rule_type,
            app_id=rule.app_id,
            error=str(error),
        )

    @staticmethod
    def _app_ids(rules: list[RuleWithChannels]) -> list[str]:
        return list(dict.fromkeys(r.app_id for r in rules))

    # ------------------------------------------------------------------
    # Events scheduler
    # ------------------------------------------------------------------

    async def _process_event_push(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        rows = await self.analytics.event_counts(self._app_ids(rules), now - RECENT_WINDOW)
        counts_by_app: dict[str, dict[str, int]] = {}
        for row in rows:
            app_counts = counts_by_app.setdefault(row.app_id, {})
            app_counts[row.event_name] = app_counts.get(row.event_name, 0) + row.count

        for rule in rules:
            try:
                app_counts = counts_by_app.get(rule.app_id)
                if not app_counts:
                    continue
                config = parse_rule_config(EventPushConfig, rule.config)
                for firing in evaluate_event_push(rule, config, app_counts):
                    await self._fire(rule, firing)
            except Exception as e:
                self._log_rule_error(rule, e)

    async def _process_threshold(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        for rule in rules:
            try:
                config = parse_rule_config(ThresholdConfig, rule.config)
                since = threshold_period_start(config.period, now)
                rows = await self.analytics.event_counts([rule.app_id], since)
                count = sum(
                    r.count for r in rows if r.app_id == rule.app_id and r.event_name == config.event_name
                )
                await self._fire(rule, evaluate_threshold(rule, config, count, now))
            except Exception as e:
                self._log_rule_error(rule, e)

    async def _process_new_values(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        value_type, label = NEW_VALUE_DIMENSIONS[rule_type]
        rows = await self.analytics.distinct_values(self._app_ids(rules), value_type, now - RECENT_WINDOW)
        values_by_app: dict[str, set[str]] = {}
        for row in rows:
            values_by_app.setdefault(row.app_id, set()).add(row.value)

        for rule in rules:
            try:
                current = values_by_app.get(rule.app_id)
                if not current:
                    continue
                known = await self.known_values.get_known_values(rule.app_id, value_type)
                new_values = find_new_values(current, known)
                if not new_values:
                    continue

                # Record before notifying so a value is only ever "new" once
                await self.known_values.record_new_values(rule.app_id, value_type, new_values)

                for firing in evaluate_new_values(rule, label, new_values):
                    await self._fire(rule, firing)
            except Exception as e:
                self._log_rule_error(rule, e)

    # ------------------------------------------------------------------
    # Health scheduler
    # ------------------------------------------------------------------

    async def _process_dead_app(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        rows = await self.analytics.last_events(self._app_ids(rules))
        last_by_app = {row.app_id: row.last_timestamp for row in rows}

        for rule in rules:
            try:
                config = parse_rule_config(DeadAppConfig, rule.config)
                await self._fire(rule, evaluate_dead_app(rule, config, last_by_app.get(rule.app_id), now))
            except Exception as e:
                self._log_rule_error(rule, e)

    async def _process_volume_anomaly(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        since = now - timedelta(days=VOLUME_LOOKBACK_DAYS)
        rows = await self.analytics.daily_volume(self._app_ids(rules), since)
        volumes_by_app: dict[str, list[DailyVolume]] = {}
        for row in rows:
            volumes_by_app.setdefault(row.app_id, []).append(row)

        for rule in rules:
            try:
                volumes = volumes_by_app.get(rule.app_id)
                if not volumes:
                    continue
                config = parse_rule_config(VolumeAnomalyConfig, rule.config)
                await self._fire(rule, evaluate_volume_anomaly(rule, config, volumes, now))
            except Exception as e:
                self._log_rule_error(rule, e)

    # ------------------------------------------------------------------
    # Digest scheduler
    # ------------------------------------------------------------------

    async def _process_digest(self, rule_type: str, rules: list[RuleWithChannels], now: datetime) -> None:
        for rule in rules:
            try:
                config = parse_rule_config(DigestConfig, rule.config)
                if not digest_due(config, now):
                    logger.debug("digest_not_due", rule_id=rule.id, weekday=config.weekday)
                    continue
                date_from, date_to = digest_window(config, now)
                summary = await self.analytics.digest(rule.app_id, date_from, date_to)
                await self._fire(rule, evaluate_digest(rule, config, summary, now))
            except Exception as e:
                self._log_rule_error(rule, e)
