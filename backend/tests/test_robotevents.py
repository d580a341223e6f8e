"""
Unit tests for the RobotEvents match source: pagination, parsing, and error mapping.
"""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from ingest.providers.base import FetchError
from ingest.providers.robotevents import RobotEventsSource
from shared.models.domain import CompetitionDivisionKey
from shared.models.enums import AllianceColor

KEY = CompetitionDivisionKey(competition_id=55123, division_id=1)


def _raw_match(matchnum: int, red_score: int = 0, blue_score: int = 0) -> dict[str, Any]:
    return {
        "id": 9000 + matchnum,
        "event": {"id": 55123, "name": "Worlds", "code": "RE-VRC-23-5512"},
        "division": {"id": 1, "name": "Science"},
        "round": 2,
        "instance": 1,
        "matchnum": matchnum,
        "scheduled": "2026-04-23T09:30:00-05:00",
        "started": None,
        "field": "Field 1",
        "scored": red_score > 0 or blue_score > 0,
        "name": f"Qualifier #{matchnum}",
        "alliances": [
            {
                "color": "blue",
                "score": blue_score,
                "teams": [
                    {"team": {"id": 1, "name": "3333C", "code": None}, "sitting": False},
                    {"team": {"id": 2, "name": "4444D", "code": None}, "sitting": False},
                ],
            },
            {
                "color": "red",
                "score": red_score,
                "teams": [
                    {"team": {"id": 3, "name": "1234A", "code": None}, "sitting": False},
                    {"team": {"id": 4, "name": "2222B", "code": None}, "sitting": False},
                ],
            },
        ],
    }


def _source(handler: Callable[[httpx.Request], httpx.Response], max_retries: int = 1) -> RobotEventsSource:
    return RobotEventsSource(
        api_token="secret",
        base_url="https://robotevents.test/api/v2",
        page_size=2,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_follows_pages() -> None:
    pages = {
        1: [_raw_match(1, 10, 5), _raw_match(2)],
        2: [_raw_match(3)],
    }
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        page = int(request.url.params["page"])
        return httpx.Response(200, json={"meta": {"current_page": page, "last_page": 2}, "data": pages[page]})

    source = _source(handler)
    await source.start()
    try:
        matches = await source.fetch_matches(KEY)
    finally:
        await source.close()

    assert [m.matchnum for m in matches] == [1, 2, 3]
    assert seen[0].url.path == "/api/v2/events/55123/divisions/1/matches"
    assert seen[0].url.params["per_page"] == "2"
    assert seen[0].headers["authorization"] == "Bearer secret"

    first = matches[0]
    red = first.alliance(AllianceColor.RED)
    assert red is not None and red.teams == ("1234A", "2222B") and red.score == 10
    assert first.scheduled is not None and first.started is None


@pytest.mark.asyncio
async def test_identical_payloads_parse_to_equal_lists() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"meta": {"last_page": 1}, "data": [_raw_match(1)]})

    source = _source(handler)
    await source.start()
    try:
        assert await source.fetch_matches(KEY) == await source.fetch_matches(KEY)
    finally:
        await source.close()


@pytest.mark.asyncio
async def test_http_error_becomes_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "down"})

    source = _source(handler)
    await source.start()
    try:
        with pytest.raises(FetchError) as info:
            await source.fetch_matches(KEY)
    finally:
        await source.close()
    assert info.value.status_code == 503
    assert info.value.key == KEY


@pytest.mark.asyncio
async def test_server_error_is_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"meta": {"last_page": 1}, "data": [_raw_match(1)]})

    source = RobotEventsSource(
        api_token="secret",
        base_url="https://robotevents.test/api/v2",
        max_retries=2,
        transport=httpx.MockTransport(handler),
    )
    source._http._retry_delay_s = 0.0
    await source.start()
    try:
        matches = await source.fetch_matches(KEY)
    finally:
        await source.close()
    assert calls["n"] == 2
    assert len(matches) == 1


@pytest.mark.asyncio
async def test_connection_error_becomes_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    source = _source(handler)
    await source.start()
    try:
        with pytest.raises(FetchError):
            await source.fetch_matches(KEY)
    finally:
        await source.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"meta": {}, "data": None}),
        httpx.Response(200, json={"meta": {}, "data": [{"round": "final?", "matchnum": 1}]}),
    ],
)
async def test_malformed_payload_becomes_fetch_error(response: httpx.Response) -> None:
    source = _source(lambda request: response)
    await source.start()
    try:
        with pytest.raises(FetchError):
            await source.fetch_matches(KEY)
    finally:
        await source.close()
