"""Append-only audit log: one row per delivered (firing x channel)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationLog(Base):
    __tablename__ = "notification_log"
    __table_args__ = (
        Index("ix_notification_log_app_id_sent_at", "app_id", "sent_at"),
        Index("ix_notification_log_dedup_key", "dedup_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    app_id: Mapped[str] = mapped_column(String(64))

    # No foreign keys: audit rows outlive the rules and channels they mention.
    # rule_id is NULL for test sends.
    rule_id: Mapped[uuid.UUID | None] = mapped_column(default=None)
    channel_id: Mapped[uuid.UUID]

    message: Mapped[str] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    dedup_key: Mapped[str | None] = mapped_column(String(200), default=None)
