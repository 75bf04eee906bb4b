"""Tests for the query engine client."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from modules.notifications.analytics import (
    DIGEST_QUERY,
    DISTINCT_VALUES_QUERY,
    EVENT_COUNTS_QUERY,
    LAST_EVENT_QUERY,
    AnalyticsClient,
    AnalyticsQueryError,
)
from shared.schemas.analytics import DigestSummary

SINCE = datetime(2026, 3, 11, 14, 30, tzinfo=timezone.utc)


def _client(responder):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responder(request)

    http = httpx.AsyncClient(
        base_url="http://analytics:8000",
        transport=httpx.MockTransport(handler),
    )
    return AnalyticsClient("http://analytics:8000", http=http), requests


def _rows(*rows, status_code=200):
    return lambda request: httpx.Response(status_code, json={"data": list(rows)})


class TestAnalyticsClient:
    @pytest.mark.asyncio
    async def test_event_counts_request_and_rows(self):
        client, requests = _client(
            _rows({"app_id": "app-1", "event_name": "purchase", "count": 3})
        )

        rows = await client.event_counts(["app-1", "app-2"], SINCE)

        [request] = requests
        assert request.method == "POST"
        assert request.url.path == f"/v1/queries/{EVENT_COUNTS_QUERY}"
        assert json.loads(request.content) == {
            "params": {"app_ids": ["app-1", "app-2"], "since": "2026-03-11T14:30:00+00:00"}
        }
        assert rows[0].event_name == "purchase"
        assert rows[0].count == 3

    @pytest.mark.asyncio
    async def test_distinct_values_sends_column_name(self):
        client, requests = _client(_rows({"app_id": "app-1", "value": "NZ"}))

        rows = await client.distinct_values(["app-1"], "country_code", SINCE)

        assert requests[0].url.path == f"/v1/queries/{DISTINCT_VALUES_QUERY}"
        assert json.loads(requests[0].content)["params"]["column_name"] == "country_code"
        assert rows[0].value == "NZ"

    @pytest.mark.asyncio
    async def test_last_events_assume_utc(self):
        client, requests = _client(_rows({"app_id": "app-1", "last_timestamp": "2026-03-10T08:00:00"}))

        [row] = await client.last_events(["app-1"])

        assert requests[0].url.path == f"/v1/queries/{LAST_EVENT_QUERY}"
        assert row.last_timestamp == datetime(2026, 3, 10, 8, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_last_events_with_offset_converted_to_utc(self):
        client, _ = _client(_rows({"app_id": "app-1", "last_timestamp": "2026-03-10T10:00:00+02:00"}))

        [row] = await client.last_events(["app-1"])

        assert row.last_timestamp.utcoffset() == timedelta(0)
        assert row.last_timestamp.hour == 8

    @pytest.mark.asyncio
    async def test_digest_dates_and_empty_result(self):
        client, requests = _client(_rows())

        summary = await client.digest("app-1", date(2026, 3, 10), date(2026, 3, 11))

        assert requests[0].url.path == f"/v1/queries/{DIGEST_QUERY}"
        assert json.loads(requests[0].content)["params"] == {
            "app_id": "app-1",
            "date_from": "2026-03-10",
            "date_to": "2026-03-11",
        }
        assert summary == DigestSummary()

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client, _ = _client(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(AnalyticsQueryError, match="503"):
            await client.event_counts(["app-1"], SINCE)

    @pytest.mark.asyncio
    async def test_missing_data_array_raises(self):
        client, _ = _client(lambda request: httpx.Response(200, json={"rows": []}))

        with pytest.raises(AnalyticsQueryError):
            await client.named_query(EVENT_COUNTS_QUERY, {})

    @pytest.mark.asyncio
    async def test_malformed_rows_raise(self):
        client, _ = _client(_rows({"app_id": "app-1", "event_name": "x", "count": "many"}))

        with pytest.raises(AnalyticsQueryError):
            await client.event_counts(["app-1"], SINCE)

    @pytest.mark.asyncio
    async def test_owned_client_sends_token(self):
        client = AnalyticsClient("http://analytics:8000/", token="secret")
        try:
            assert client._client.headers["authorization"] == "Bearer secret"
            assert client._client.base_url.host == "analytics"
        finally:
            await client.aclose()
