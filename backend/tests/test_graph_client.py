import json

import httpx
import pytest

from campaign_insights.errors import ConfigurationError, UpstreamError
from campaign_insights.services.chunker import fetch_chunked
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.graph_client import (
    GraphAPIClient,
    insights_field,
    time_range_param,
)

from conftest import graph_error, make_client


def test_missing_token_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        GraphAPIClient("")
    with pytest.raises(ConfigurationError):
        GraphAPIClient(None)


def test_time_range_param_is_compact_json():
    assert time_range_param(DateRange("2024-01-01", "2024-01-07")) == '{"since":"2024-01-01","until":"2024-01-07"}'


def test_insights_field():
    field = insights_field(DateRange("2024-01-01", "2024-01-07"), ["spend", "clicks"])
    assert field == 'insights.time_range({"since":"2024-01-01","until":"2024-01-07"}){spend,clicks}'


@pytest.mark.asyncio
async def test_bearer_token_sent_as_header(graph):
    graph.add("123", {"id": "123", "name": "Spring"})

    async with make_client(graph) as client:
        body = await client.get("123", {"fields": "name"})

    assert body["name"] == "Spring"
    request = graph.requests[0]
    assert request.headers["Authorization"] == "Bearer test-token"
    assert "access_token" not in request.url.params


@pytest.mark.asyncio
async def test_error_status_raises_with_platform_error(graph):
    graph.add("123", graph_error(400, "Unsupported get request"))

    async with make_client(graph) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await client.get("123", {"fields": "name"})

    error = exc_info.value
    assert error.status == 400
    assert error.platform_error["message"] == "Unsupported get request"
    assert error.endpoint == "123"
    assert error.params == {"fields": "name"}


@pytest.mark.asyncio
async def test_error_body_on_success_status_raises(graph):
    graph.add("123", {"error": {"message": "Rate limited"}})

    async with make_client(graph) as client:
        with pytest.raises(UpstreamError):
            await client.get("123")


@pytest.mark.asyncio
async def test_non_json_body_raises(graph):
    graph.add("123", httpx.Response(200, text="<html>gateway</html>"))

    async with make_client(graph) as client:
        with pytest.raises(UpstreamError):
            await client.get("123")


@pytest.mark.asyncio
async def test_transport_failure_raises_upstream_error():
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with GraphAPIClient("token", transport=httpx.MockTransport(fail)) as client:
        with pytest.raises(UpstreamError):
            await client.get("123")


@pytest.mark.asyncio
async def test_get_paginated_follows_next_cursor(graph):
    def pages(request):
        if request.url.params.get("after") == "cursor-2":
            return {"data": [{"id": "3"}]}
        return {
            "data": [{"id": "1"}, {"id": "2"}],
            "paging": {"next": "https://graph.facebook.com/v24.0/act_1/campaigns?after=cursor-2"},
        }

    graph.add("act_1/campaigns", pages)

    async with make_client(graph) as client:
        rows = await client.get_paginated("act_1/campaigns", {"fields": "name", "limit": 2})

    assert [row["id"] for row in rows] == ["1", "2", "3"]
    assert len(graph.requests) == 2
    assert graph.requests[0].url.params["fields"] == "name"


@pytest.mark.asyncio
async def test_get_paginated_stops_at_max_rows(graph):
    graph.add("act_1/insights", {
        "data": [{"n": i} for i in range(10)],
        "paging": {"next": "https://graph.facebook.com/v24.0/act_1/insights?after=x"},
    })

    async with make_client(graph) as client:
        rows = await client.get_paginated("act_1/insights", max_rows=4)

    assert len(rows) == 4
    assert len(graph.requests) == 1


@pytest.mark.asyncio
async def test_fetch_chunked_issues_one_call_per_window(graph):
    def by_window(request):
        window = json.loads(request.url.params["time_range"])
        return {"data": [{"date_start": window["since"]}]}

    graph.add("act_1/insights", by_window)

    async with make_client(graph) as client:
        rows = await fetch_chunked(
            client, "act_1/insights", {"level": "account"}, DateRange("2024-01-01", "2024-01-31")
        )

    assert [row["date_start"] for row in rows] == ["2024-01-01", "2024-01-15", "2024-01-29"]
    windows = [json.loads(r.url.params["time_range"]) for r in graph.requests]
    assert windows == [
        {"since": "2024-01-01", "until": "2024-01-14"},
        {"since": "2024-01-15", "until": "2024-01-28"},
        {"since": "2024-01-29", "until": "2024-01-31"},
    ]


@pytest.mark.asyncio
async def test_fetch_chunked_short_range_is_one_call(graph):
    graph.add("act_1/insights", {"data": [{"date_start": "2024-01-01"}]})

    async with make_client(graph) as client:
        await fetch_chunked(client, "act_1/insights", {}, DateRange("2024-01-01", "2024-01-07"))

    assert len(graph.requests) == 1
    assert json.loads(graph.requests[0].url.params["time_range"]) == {
        "since": "2024-01-01",
        "until": "2024-01-07",
    }
