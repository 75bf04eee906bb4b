"""Row shapes returned by the aggregate query engine's named queries."""

from __future__ import annotations

from datetime import date, datetime, timezone

from pydantic import BaseModel, field_validator


class EventCount(BaseModel):
    app_id: str
    event_name: str
    count: int


class DistinctValue(BaseModel):
    app_id: str
    value: str


class LastEvent(BaseModel):
    app_id: str
    last_timestamp: datetime

    @field_validator("last_timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        # The engine reports naive UTC timestamps
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class DailyVolume(BaseModel):
    app_id: str
    date: date
    count: int


class DigestSummary(BaseModel):
    events: int = 0
    sessions: int = 0
    users: int = 0
