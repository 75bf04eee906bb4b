"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.known_value import NotificationKnownValue
from shared.models.notification_channel import NotificationChannel
from shared.models.notification_log import NotificationLog
from shared.models.notification_rule import NotificationRule, NotificationRuleChannel

__all__ = [
    "Base",
    "NotificationChannel",
    "NotificationKnownValue",
    "NotificationLog",
    "NotificationRule",
    "NotificationRuleChannel",
]
