"""Rule evaluators.

Each evaluator takes a rule, its parsed configuration and the aggregate data
pulled for the current tick, and returns the firings (if any) to dispatch.
They perform no I/O, so the scheduler decides how data is fetched and batched.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import structlog

from modules.notifications.rule_configs import (
    DeadAppConfig,
    DigestConfig,
    EventPushConfig,
    ThresholdConfig,
    VolumeAnomalyConfig,
)
from shared.schemas.analytics import DailyVolume, DigestSummary
from shared.schemas.notifications import RuleWithChannels

logger = structlog.get_logger()

DAY_MINUTES = 1440
HOUR_MINUTES = 60

# volume_anomaly needs at least a week of history before today
MIN_HISTORY_DAYS = 7
VOLUME_LOOKBACK_DAYS = 30

# Column widths of notification_log.dedup_key and notification_known_values.value
MAX_DEDUP_KEY_LENGTH = 200
MAX_KNOWN_VALUE_LENGTH = 200


@dataclass(frozen=True)
class Firing:
    """A satisfied rule condition, ready for the dispatcher."""

    title: str
    message: str
    dedup_key: str | None
    dedup_window_minutes: int


def _fmt_count(n: float) -> str:
    return f"{n:,.0f}"


def _day_stamp(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def bounded_dedup_key(prefix: str, value: str) -> str:
    """``prefix:value``, hashing the value when the key would not fit the log column."""
    key = f"{prefix}:{value}"
    if len(key) <= MAX_DEDUP_KEY_LENGTH:
        return key
    return f"{prefix}:sha1:{hashlib.sha1(value.encode()).hexdigest()}"


# ---------------------------------------------------------------------------
# event_push
# ---------------------------------------------------------------------------


def evaluate_event_push(
    rule: RuleWithChannels,
    config: EventPushConfig,
    counts: Mapping[str, int],
) -> list[Firing]:
    """One firing per configured event name seen in the last 5 minutes."""
    firings = []
    for name in config.event_names:
        count = counts.get(name, 0)
        if count <= 0:
            continue
        firings.append(
            Firing(
                title=f"Event: {name}",
                message=f"{_fmt_count(count)} occurrence(s) of '{name}' in the last 5 minutes.",
                dedup_key=bounded_dedup_key(f"event_push:{rule.id}", name) if config.dedup else None,
                dedup_window_minutes=config.dedup_window_minutes,
            )
        )
    return firings


# ---------------------------------------------------------------------------
# threshold
# ---------------------------------------------------------------------------


def threshold_period_start(period: str, now: datetime) -> datetime:
    """Start of the current UTC hour or day."""
    if period == "hour":
        return now.replace(minute=0, second=0, microsecond=0)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def evaluate_threshold(
    rule: RuleWithChannels,
    config: ThresholdConfig,
    count: int,
    now: datetime,
) -> Firing | None:
    if count <= config.threshold:
        return None
    if config.period == "hour":
        bucket = now.strftime("%Y-%m-%d-%H")
        window = HOUR_MINUTES
    else:
        bucket = _day_stamp(now)
        window = DAY_MINUTES
    return Firing(
        title=f"Threshold Alert: {config.event_name}",
        message=(
            f"Event '{config.event_name}' has reached {_fmt_count(count)} occurrences "
            f"(threshold: {_fmt_count(config.threshold)}) in the current {config.period}."
        ),
        dedup_key=f"threshold:{rule.id}:{bucket}",
        dedup_window_minutes=window,
    )


# ---------------------------------------------------------------------------
# new_event_name / new_app_version / new_country
# ---------------------------------------------------------------------------


def find_new_values(current: set[str], known: set[str]) -> list[str]:
    """Values seen now but never recorded before, in stable order.

    Values too long to be stored as known values are skipped.
    """
    new_values = []
    for value in sorted(v for v in current - known if v):
        if len(value) > MAX_KNOWN_VALUE_LENGTH:
            logger.warning("known_value_too_long", length=len(value), prefix=value[:40])
            continue
        new_values.append(value)
    return new_values


def evaluate_new_values(rule: RuleWithChannels, label: str, new_values: Sequence[str]) -> list[Firing]:
    return [
        Firing(
            title=f"New {label} detected",
            message=f"A new {label} was detected: '{value}'",
            dedup_key=bounded_dedup_key(f"{rule.rule_type}:{rule.app_id}", value),
            dedup_window_minutes=DAY_MINUTES,
        )
        for value in new_values
    ]


# ---------------------------------------------------------------------------
# dead_app
# ---------------------------------------------------------------------------


def evaluate_dead_app(
    rule: RuleWithChannels,
    config: DeadAppConfig,
    last_event_at: datetime | None,
    now: datetime,
) -> Firing | None:
    """Fire when the app has been silent for at least ``hours``.

    Apps that never sent an event have no last timestamp and never fire.
    """
    if last_event_at is None:
        return None
    silent_hours = (now - last_event_at).total_seconds() / 3600
    if silent_hours < config.hours:
        return None
    return Firing(
        title="Dead App Alert",
        message=(
            f"No events received for {silent_hours:.1f} hours (threshold: {config.hours}h). "
            f"Last event was at {last_event_at.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC."
        ),
        dedup_key=f"dead_app:{rule.id}:{_day_stamp(now)}",
        dedup_window_minutes=DAY_MINUTES,
    )


# ---------------------------------------------------------------------------
# volume_anomaly
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VolumeAnomaly:
    today: float
    mean: float
    stddev: float
    z_score: float

    @property
    def direction(self) -> str:
        return "spike" if self.today > self.mean else "drop"


def detect_volume_anomaly(
    historical: Sequence[float],
    today: float,
    sigma: float,
) -> VolumeAnomaly | None:
    """Z-score test of today's count against the historical daily counts.

    Mean and population standard deviation come from ``historical`` only.
    Returns None with fewer than MIN_HISTORY_DAYS points, zero variance, or
    a z-score below ``sigma``.
    """
    if len(historical) < MIN_HISTORY_DAYS:
        return None
    mean = sum(historical) / len(historical)
    stddev = math.sqrt(sum((c - mean) ** 2 for c in historical) / len(historical))
    if stddev == 0:
        return None
    z_score = abs(today - mean) / stddev
    if z_score < sigma:
        return None
    return VolumeAnomaly(today=today, mean=mean, stddev=stddev, z_score=z_score)


def split_daily_volumes(volumes: Sequence[DailyVolume], today: date) -> tuple[list[float], float]:
    """Partition a daily series into historical counts (before today) and today's count."""
    historical = [float(v.count) for v in sorted(volumes, key=lambda v: v.date) if v.date < today]
    today_count = float(sum(v.count for v in volumes if v.date == today))
    return historical, today_count


def evaluate_volume_anomaly(
    rule: RuleWithChannels,
    config: VolumeAnomalyConfig,
    volumes: Sequence[DailyVolume],
    now: datetime,
) -> Firing | None:
    historical, today_count = split_daily_volumes(volumes, now.date())
    anomaly = detect_volume_anomaly(historical, today_count, config.sigma)
    if anomaly is None:
        return None
    direction = anomaly.direction
    return Firing(
        title=f"Volume {direction} detected",
        message=(
            f"Today's event count ({_fmt_count(anomaly.today)}) is {anomaly.z_score:.1f}σ {direction} "
            f"from the 30-day average ({_fmt_count(anomaly.mean)}). "
            f"Sensitivity: {config.sensitivity}."
        ),
        dedup_key=f"volume_anomaly:{rule.id}:{_day_stamp(now)}",
        dedup_window_minutes=DAY_MINUTES,
    )


# ---------------------------------------------------------------------------
# scheduled_digest
# ---------------------------------------------------------------------------


def digest_due(config: DigestConfig, now: datetime) -> bool:
    """Daily digests are always due; weekly ones only on their weekday."""
    return config.schedule != "weekly" or now.weekday() == config.weekday


def digest_window(config: DigestConfig, now: datetime) -> tuple[date, date]:
    """[date_from, date_to) covering yesterday, or the previous 7 days."""
    today = now.date()
    days = 7 if config.schedule == "weekly" else 1
    return today - timedelta(days=days), today


def evaluate_digest(
    rule: RuleWithChannels,
    config: DigestConfig,
    summary: DigestSummary,
    now: datetime,
) -> Firing:
    label = "Weekly" if config.schedule == "weekly" else "Daily"
    message = "\n".join(
        [
            f"Events: {_fmt_count(summary.events)}",
            f"Sessions: {_fmt_count(summary.sessions)}",
            f"Unique Users: {_fmt_count(summary.users)}",
        ]
    )
    return Firing(
        title=f"{label} Digest",
        message=message,
        dedup_key=f"digest:{rule.id}:{_day_stamp(now)}",
        dedup_window_minutes=DAY_MINUTES,
    )
