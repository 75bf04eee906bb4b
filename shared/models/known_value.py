"""First-seen markers for discrete event dimensions."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationKnownValue(Base):
    __tablename__ = "notification_known_values"
    __table_args__ = (
        Index("ix_notification_known_values_app_id_value_type", "app_id", "value_type"),
    )

    app_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    value_type: Mapped[str] = mapped_column(String(20), primary_key=True)  # "event_name" | "app_version" | "country_code"
    value: Mapped[str] = mapped_column(String(200), primary_key=True)

    # Set on first insert only
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
