"""Typed rule configurations.

Rules store their configuration as an untyped JSON document.  Each evaluator
parses it into one of these models first.  Optional fields fall back to their
defaults when missing or malformed; a rule whose required fields cannot be
read raises InvalidRuleConfigError and is skipped for the tick.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

SENSITIVITY_SIGMAS: dict[str, float] = {
    "low": 3.0,
    "medium": 2.0,
    "high": 1.5,
}

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class InvalidRuleConfigError(ValueError):
    """A rule's configuration lacks something that has no sensible default."""


def _int_or(value: Any, default: int, minimum: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return default
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < minimum:
        return default
    return value


def _choice_or(value: Any, choices, default: str) -> str:
    if isinstance(value, str) and value.strip().lower() in choices:
        return value.strip().lower()
    return default


class RuleConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EventPushConfig(RuleConfig):
    event_names: list[str] = Field(default_factory=list)
    dedup: bool = False
    dedup_window_minutes: int = 60

    @model_validator(mode="before")
    @classmethod
    def _single_event_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and "event_names" not in data and "event_name" in data:
            data = {**data, "event_names": data["event_name"]}
        return data

    @field_validator("event_names", mode="before")
    @classmethod
    def _event_names(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return list(dict.fromkeys(name for name in v if isinstance(name, str) and name))

    @field_validator("dedup", mode="before")
    @classmethod
    def _dedup(cls, v: Any) -> bool:
        return v if isinstance(v, bool) else False

    @field_validator("dedup_window_minutes", mode="before")
    @classmethod
    def _window(cls, v: Any) -> int:
        return _int_or(v, 60, minimum=1)


class ThresholdConfig(RuleConfig):
    event_name: str = Field(min_length=1)
    threshold: int = Field(ge=0)
    period: str = "day"

    @field_validator("threshold", mode="before")
    @classmethod
    def _threshold(cls, v: Any) -> Any:
        # Accept "1000" and 1000.0; anything else is left for pydantic to reject
        coerced = _int_or(v, -1, minimum=0)
        return coerced if coerced >= 0 else v

    @field_validator("period", mode="before")
    @classmethod
    def _period(cls, v: Any) -> str:
        return _choice_or(v, ("hour", "day"), "day")


class NewValueConfig(RuleConfig):
    pass


class DeadAppConfig(RuleConfig):
    hours: int = 24

    @field_validator("hours", mode="before")
    @classmethod
    def _hours(cls, v: Any) -> int:
        return _int_or(v, 24, minimum=1)


class VolumeAnomalyConfig(RuleConfig):
    sensitivity: str = "medium"

    @field_validator("sensitivity", mode="before")
    @classmethod
    def _sensitivity(cls, v: Any) -> str:
        return _choice_or(v, SENSITIVITY_SIGMAS, "medium")

    @property
    def sigma(self) -> float:
        return SENSITIVITY_SIGMAS[self.sensitivity]


class DigestConfig(RuleConfig):
    schedule: str = "daily"
    weekday: int = 0  # Monday

    @field_validator("schedule", mode="before")
    @classmethod
    def _schedule(cls, v: Any) -> str:
        return _choice_or(v, ("daily", "weekly"), "daily")

    @field_validator("weekday", mode="before")
    @classmethod
    def _weekday(cls, v: Any) -> int:
        if isinstance(v, str) and v.strip().lower() in _WEEKDAYS:
            return _WEEKDAYS.index(v.strip().lower())
        day = _int_or(v, 0, minimum=0)
        return day if day <= 6 else 0


CONFIG_MODELS: dict[str, type[RuleConfig]] = {
    "event_push": EventPushConfig,
    "threshold": ThresholdConfig,
    "new_event_name": NewValueConfig,
    "new_app_version": NewValueConfig,
    "new_country": NewValueConfig,
    "dead_app": DeadAppConfig,
    "volume_anomaly": VolumeAnomalyConfig,
    "scheduled_digest": DigestConfig,
}

C = TypeVar("C", bound=RuleConfig)


def parse_rule_config(model: type[C], raw: Any) -> C:
    """Parse a stored config document into ``model``."""
    data = raw if isinstance(raw, dict) else {}
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidRuleConfigError(f"invalid {model.__name__}: {fields}") from e
