"""Client for the aggregate query engine's named queries."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from shared.schemas.analytics import (
    DailyVolume,
    DigestSummary,
    DistinctValue,
    EventCount,
    LastEvent,
)

logger = structlog.get_logger()

EVENT_COUNTS_QUERY = "notification_event_counts__v1"
DISTINCT_VALUES_QUERY = "notification_distinct_values__v1"
LAST_EVENT_QUERY = "notification_last_event__v1"
DAILY_VOLUME_QUERY = "notification_daily_volume__v1"
DIGEST_QUERY = "notification_digest__v1"


class AnalyticsQueryError(Exception):
    """The query engine failed or returned something we cannot read."""


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


class AnalyticsClient:
    """Typed wrappers over ``POST {base_url}/v1/queries/{name}``."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = http is None
        self._client = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def named_query(self, name: str, params: dict[str, Any]) -> list[dict]:
        """Run a named query and return its raw rows."""
        payload = {"params": {k: _jsonable(v) for k, v in params.items()}}
        resp = await self._client.post(f"/v1/queries/{name}", json=payload)
        if resp.status_code >= 400:
            raise AnalyticsQueryError(
                f"Query {name} failed with HTTP {resp.status_code}: {resp.text[:300]}"
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise AnalyticsQueryError(f"Query {name} returned invalid JSON") from e
        rows = body.get("data") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise AnalyticsQueryError(f"Query {name} returned no data array")
        logger.debug("analytics_query", query=name, rows=len(rows))
        return rows

    async def _typed(self, name: str, params: dict[str, Any], model):
        rows = await self.named_query(name, params)
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as e:
            raise AnalyticsQueryError(f"Query {name} returned malformed rows: {e}") from e

    async def event_counts(self, app_ids: list[str], since: datetime) -> list[EventCount]:
        """Per-app, per-event-name counts since a timestamp."""
        return await self._typed(EVENT_COUNTS_QUERY, {"app_ids": app_ids, "since": since}, EventCount)

    async def distinct_values(
        self, app_ids: list[str], column: str, since: datetime
    ) -> list[DistinctValue]:
        """Distinct values of ``column`` per app since a timestamp."""
        return await self._typed(
            DISTINCT_VALUES_QUERY,
            {"app_ids": app_ids, "column_name": column, "since": since},
            DistinctValue,
        )

    async def last_events(self, app_ids: list[str]) -> list[LastEvent]:
        """Timestamp of the latest event per app; apps without events are absent."""
        return await self._typed(LAST_EVENT_QUERY, {"app_ids": app_ids}, LastEvent)

    async def daily_volume(self, app_ids: list[str], since: datetime) -> list[DailyVolume]:
        """Daily event counts per app since a timestamp."""
        return await self._typed(DAILY_VOLUME_QUERY, {"app_ids": app_ids, "since": since}, DailyVolume)

    async def digest(self, app_id: str, date_from: date, date_to: date) -> DigestSummary:
        """Event, session and unique-user totals for [date_from, date_to)."""
        rows = await self._typed(
            DIGEST_QUERY,
            {"app_id": app_id, "date_from": date_from, "date_to": date_to},
            DigestSummary,
        )
        return rows[0] if rows else DigestSummary()
