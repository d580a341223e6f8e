"""API route tests. The AppContext is built from fakes; no network, no APNs key needed beyond a temp file."""
from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import AppContext
from shared.models.domain import CompetitionDivisionKey, Subscription

from conftest import FakeSource, make_match

KEY = CompetitionDivisionKey(competition_id=1, division_id=2)


@pytest.fixture
def client(context: AppContext) -> TestClient:
    """Test client with lifespan disabled so routes run without the poll loop."""
    app = create_app(context, use_lifespan=False)
    with TestClient(app) as c:
        yield c


def _snapshot(context: AppContext):
    return asyncio.run(context.registry.snapshot())


def test_health_returns_ok(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "relay"}
    assert r.headers.get("x-request-id")


def test_subscribe_creates_subscription(client: TestClient, context: AppContext) -> None:
    r = client.post(
        "/v1/subscribe",
        json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"},
    )
    assert r.status_code == 201
    assert _snapshot(context)[KEY] == (Subscription(team_name="1234A", device_token="T1"),)


def test_subscribe_accepts_snake_case(client: TestClient, context: AppContext) -> None:
    r = client.post(
        "/v1/subscribe",
        json={"competition_id": 1, "division_id": 2, "device_token": "T1", "watch_team": "1234A"},
    )
    assert r.status_code == 201
    assert KEY in _snapshot(context)


def test_resubscribe_moves_device(client: TestClient, context: AppContext) -> None:
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
    client.post("/v1/subscribe", json={"competitionId": 7, "divisionId": 1, "deviceToken": "T1", "watchTeam": "5555E"})
    snapshot = _snapshot(context)
    assert KEY not in snapshot
    assert snapshot[CompetitionDivisionKey(competition_id=7, division_id=1)] == (
        Subscription(team_name="5555E", device_token="T1"),
    )


def test_subscribe_forgets_cached_matches(client: TestClient, context: AppContext) -> None:
    asyncio.run(context.cache.replace(KEY, [make_match()]))
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
    assert asyncio.run(context.cache.get_last_known(KEY)) == ()


@pytest.mark.parametrize(
    "body",
    [
        {"competitionId": 1, "divisionId": 2, "deviceToken": "T1"},
        {"competitionId": "abc", "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"},
        {"competitionId": 1, "divisionId": 2, "deviceToken": "", "watchTeam": "1234A"},
    ],
)
def test_subscribe_rejects_malformed_body(client: TestClient, context: AppContext, body: dict) -> None:
    r = client.post("/v1/subscribe", json=body)
    assert r.status_code == 422
    assert _snapshot(context) == {}


def test_subscribe_rejects_oversized_body(client: TestClient, context: AppContext) -> None:
    r = client.post(
        "/v1/subscribe",
        json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A", "pad": "x" * 20_000},
    )
    assert r.status_code == 413
    assert _snapshot(context) == {}


def test_change_rotates_token(client: TestClient, context: AppContext) -> None:
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
    r = client.post("/v1/change", json={"oldDeviceToken": "T1", "newDeviceToken": "T2"})
    assert r.status_code == 202
    assert _snapshot(context)[KEY] == (Subscription(team_name="1234A", device_token="T2"),)


def test_change_with_empty_token_removes(client: TestClient, context: AppContext) -> None:
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
    r = client.post("/v1/change", json={"oldDeviceToken": "T1", "newDeviceToken": ""})
    assert r.status_code == 202
    assert _snapshot(context) == {}


def test_change_unknown_token_is_accepted(client: TestClient) -> None:
    r = client.post("/v1/change", json={"oldDeviceToken": "nobody", "newDeviceToken": "T2"})
    assert r.status_code == 202


def test_change_rejects_missing_old_token(client: TestClient) -> None:
    r = client.post("/v1/change", json={"newDeviceToken": "T2"})
    assert r.status_code == 422


def test_status_reports_counts(client: TestClient) -> None:
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
    client.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T2", "watchTeam": "5555E"})
    data = client.get("/v1/status").json()
    assert data["subscriptions"] == 2
    assert data["divisions"] == 1


def test_lifespan_runs_reconciliation_and_closes(
    context: AppContext, fake_source: FakeSource, mock_push: MagicMock
) -> None:
    fake_source.queue(KEY, [make_match(matchnum=1)])
    app = create_app(context)
    with TestClient(app) as c:
        c.post("/v1/subscribe", json={"competitionId": 1, "divisionId": 2, "deviceToken": "T1", "watchTeam": "1234A"})
        assert app.state.reconciliation is not None
        for _ in range(100):
            if mock_push.update_activity.await_count:
                break
            c.portal.call(asyncio.sleep, 0.02)

    assert fake_source.started and fake_source.closed
    mock_push.start.assert_awaited_once()
    mock_push.close.assert_awaited_once()
    assert app.state.reconciliation.shutting_down
    mock_push.update_activity.assert_awaited()
