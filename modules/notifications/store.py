"""Storage access for channels, rules, the notification log and known values."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.models.known_value import NotificationKnownValue
from shared.models.notification_channel import NotificationChannel
from shared.models.notification_log import NotificationLog
from shared.models.notification_rule import NotificationRule, NotificationRuleChannel
from shared.schemas.notifications import NotificationLogEntry, RuleWithChannels

logger = structlog.get_logger()


def _parse_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError):
        return None


def _to_rule(rule: NotificationRule, channel_ids: list[str]) -> RuleWithChannels:
    return RuleWithChannels(
        id=str(rule.id),
        app_id=rule.app_id,
        rule_type=rule.rule_type,
        config=rule.config if isinstance(rule.config, dict) else {},
        enabled=rule.enabled,
        channel_ids=channel_ids,
        created_at=rule.created_at,
    )


class NotificationStore:
    """All reads and writes the notification pipeline needs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def list_channels(self, app_id: str) -> list[NotificationChannel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationChannel)
                .where(NotificationChannel.app_id == app_id)
                .order_by(NotificationChannel.created_at)
            )
            return list(result.scalars().all())

    async def get_channel(self, app_id: str, channel_id: str) -> NotificationChannel | None:
        cid = _parse_uuid(channel_id)
        if cid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationChannel).where(
                    NotificationChannel.id == cid,
                    NotificationChannel.app_id == app_id,
                )
            )
            return result.scalar_one_or_none()

    async def create_channel(
        self, app_id: str, name: str, channel_type: str, config: dict
    ) -> NotificationChannel:
        now = datetime.now(timezone.utc)
        channel = NotificationChannel(
            id=uuid.uuid4(),
            app_id=app_id,
            name=name,
            channel_type=channel_type,
            config=config,
            enabled=True,
            created_at=now,
            modified_at=now,
        )
        async with self.session_factory() as session:
            session.add(channel)
            await session.commit()
        logger.info("channel_created", app_id=app_id, channel_id=str(channel.id), channel_type=channel_type)
        return channel

    async def update_channel(
        self, app_id: str, channel_id: str, name: str, config: dict, enabled: bool
    ) -> NotificationChannel | None:
        """Update name/config/enabled.  The channel type is never changed."""
        cid = _parse_uuid(channel_id)
        if cid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationChannel).where(
                    NotificationChannel.id == cid,
                    NotificationChannel.app_id == app_id,
                )
            )
            channel = result.scalar_one_or_none()
            if channel is None:
                return None
            channel.name = name
            channel.config = config
            channel.enabled = enabled
            channel.modified_at = datetime.now(timezone.utc)
            await session.commit()
            return channel

    async def delete_channel(self, app_id: str, channel_id: str) -> bool:
        cid = _parse_uuid(channel_id)
        if cid is None:
            return False
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationChannel).where(
                    NotificationChannel.id == cid,
                    NotificationChannel.app_id == app_id,
                )
            )
            channel = result.scalar_one_or_none()
            if channel is None:
                return False
            await session.execute(
                delete(NotificationRuleChannel).where(NotificationRuleChannel.channel_id == cid)
            )
            await session.delete(channel)
            await session.commit()
        logger.info("channel_deleted", app_id=app_id, channel_id=channel_id)
        return True

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def _channel_ids_by_rule(
        self, session: AsyncSession, rule_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, list[str]]:
        if not rule_ids:
            return {}
        result = await session.execute(
            select(NotificationRuleChannel.rule_id, NotificationRuleChannel.channel_id).where(
                NotificationRuleChannel.rule_id.in_(rule_ids)
            )
        )
        by_rule: dict[uuid.UUID, list[str]] = {}
        for rule_id, channel_id in result.all():
            by_rule.setdefault(rule_id, []).append(str(channel_id))
        return by_rule

    async def _owned_channel_ids(
        self, session: AsyncSession, app_id: str, channel_ids: Iterable[str]
    ) -> list[uuid.UUID]:
        """Keep only channel ids that exist and belong to ``app_id``."""
        wanted = [cid for cid in (_parse_uuid(c) for c in channel_ids) if cid is not None]
        if not wanted:
            return []
        result = await session.execute(
            select(NotificationChannel.id).where(
                NotificationChannel.id.in_(wanted),
                NotificationChannel.app_id == app_id,
            )
        )
        owned = set(result.scalars().all())
        # Preserve caller order, drop duplicates
        return list(dict.fromkeys(cid for cid in wanted if cid in owned))

    async def list_rules(self, app_id: str) -> list[RuleWithChannels]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRule)
                .where(NotificationRule.app_id == app_id)
                .order_by(NotificationRule.created_at)
            )
            rules = list(result.scalars().all())
            by_rule = await self._channel_ids_by_rule(session, [r.id for r in rules])
        return [_to_rule(r, by_rule.get(r.id, [])) for r in rules]

    async def get_rule(self, app_id: str, rule_id: str) -> RuleWithChannels | None:
        rid = _parse_uuid(rule_id)
        if rid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRule).where(
                    NotificationRule.id == rid,
                    NotificationRule.app_id == app_id,
                )
            )
            rule = result.scalar_one_or_none()
            if rule is None:
                return None
            by_rule = await self._channel_ids_by_rule(session, [rule.id])
        return _to_rule(rule, by_rule.get(rule.id, []))

    async def create_rule(
        self, app_id: str, rule_type: str, config: dict, channel_ids: list[str]
    ) -> RuleWithChannels:
        now = datetime.now(timezone.utc)
        rule = NotificationRule(
            id=uuid.uuid4(),
            app_id=app_id,
            rule_type=rule_type,
            config=config,
            enabled=True,
            created_at=now,
            modified_at=now,
        )
        async with self.session_factory() as session:
            session.add(rule)
            linked = await self._owned_channel_ids(session, app_id, channel_ids)
            for cid in linked:
                session.add(NotificationRuleChannel(rule_id=rule.id, channel_id=cid))
            await session.commit()
        logger.info("rule_created", app_id=app_id, rule_id=str(rule.id), rule_type=rule_type)
        return _to_rule(rule, [str(c) for c in linked])

    async def update_rule(
        self,
        app_id: str,
        rule_id: str,
        config: dict,
        enabled: bool,
        channel_ids: list[str],
    ) -> RuleWithChannels | None:
        rid = _parse_uuid(rule_id)
        if rid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRule).where(
                    NotificationRule.id == rid,
                    NotificationRule.app_id == app_id,
                )
            )
            rule = result.scalar_one_or_none()
            if rule is None:
                return None
            rule.config = config
            rule.enabled = enabled
            rule.modified_at = datetime.now(timezone.utc)

            # Replace the channel set wholesale
            await session.execute(
                delete(NotificationRuleChannel).where(NotificationRuleChannel.rule_id == rid)
            )
            linked = await self._owned_channel_ids(session, app_id, channel_ids)
            for cid in linked:
                session.add(NotificationRuleChannel(rule_id=rid, channel_id=cid))
            await session.commit()
        return _to_rule(rule, [str(c) for c in linked])

    async def delete_rule(self, app_id: str, rule_id: str) -> bool:
        rid = _parse_uuid(rule_id)
        if rid is None:
            return False
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRule).where(
                    NotificationRule.id == rid,
                    NotificationRule.app_id == app_id,
                )
            )
            rule = result.scalar_one_or_none()
            if rule is None:
                return False
            await session.execute(
                delete(NotificationRuleChannel).where(NotificationRuleChannel.rule_id == rid)
            )
            await session.delete(rule)
            await session.commit()
        logger.info("rule_deleted", app_id=app_id, rule_id=rule_id)
        return True

    async def get_enabled_rules_by_type(self, rule_types: Sequence[str]) -> list[RuleWithChannels]:
        """All enabled rules of the given types across apps, with their channel ids."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRule)
                .where(
                    NotificationRule.enabled.is_(True),
                    NotificationRule.rule_type.in_(list(rule_types)),
                )
                .order_by(NotificationRule.created_at)
            )
            rules = list(result.scalars().all())
            by_rule = await self._channel_ids_by_rule(session, [r.id for r in rules])
        return [_to_rule(r, by_rule.get(r.id, [])) for r in rules]

    # ------------------------------------------------------------------
    # Known values
    # ------------------------------------------------------------------

    async def get_known_values(self, app_id: str, value_type: str) -> set[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationKnownValue.value).where(
                    NotificationKnownValue.app_id == app_id,
                    NotificationKnownValue.value_type == value_type,
                )
            )
            return set(result.scalars().all())

    async def insert_known_values(self, app_id: str, value_type: str, values: Iterable[str]) -> None:
        """Insert-if-absent; first_seen_at of an existing value is left alone."""
        rows = [
            {"app_id": app_id, "value_type": value_type, "value": v, "first_seen_at": datetime.now(timezone.utc)}
            for v in dict.fromkeys(values)
        ]
        if not rows:
            return
        stmt = pg_insert(NotificationKnownValue).values(rows).on_conflict_do_nothing(
            index_elements=["app_id", "value_type", "value"]
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    # ------------------------------------------------------------------
    # Notification log
    # ------------------------------------------------------------------

    async def has_recent_notification(self, dedup_key: str, window_minutes: int) -> bool:
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationLog)
                .where(
                    NotificationLog.dedup_key == dedup_key,
                    NotificationLog.sent_at > since,
                )
            )
            return (result.scalar_one() or 0) > 0

    async def count_recent_notifications(self, app_id: str, window_minutes: int) -> int:
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationLog)
                .where(
                    NotificationLog.app_id == app_id,
                    NotificationLog.sent_at > since,
                )
            )
            return int(result.scalar_one() or 0)

    async def log_notification(
        self,
        app_id: str,
        rule_id: str | None,
        channel_id: str,
        message: str,
        dedup_key: str | None,
    ) -> None:
        entry = NotificationLog(
            id=uuid.uuid4(),
            app_id=app_id,
            rule_id=_parse_uuid(rule_id) if rule_id else None,
            channel_id=_parse_uuid(channel_id),
            message=message,
            sent_at=datetime.now(timezone.utc),
            dedup_key=dedup_key,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

    async def get_recent_logs(self, app_id: str, limit: int = 50) -> list[NotificationLogEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    NotificationLog,
                    NotificationChannel.name,
                    NotificationRule.rule_type,
                )
                .outerjoin(NotificationChannel, NotificationChannel.id == NotificationLog.channel_id)
                .outerjoin(NotificationRule, NotificationRule.id == NotificationLog.rule_id)
                .where(NotificationLog.app_id == app_id)
                .order_by(NotificationLog.sent_at.desc())
                .limit(limit)
            )
            rows = result.all()
        return [
            NotificationLogEntry(
                id=str(log.id),
                rule_id=str(log.rule_id) if log.rule_id else None,
                channel_id=str(log.channel_id),
                channel_name=channel_name,
                rule_type=rule_type,
                message=log.message,
                sent_at=log.sent_at,
                dedup_key=log.dedup_key,
            )
            for log, channel_name, rule_type in rows
        ]
