"""Shared fixtures: match factories, settings, throwaway signing keys, fake collaborators."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from api.dependencies import AppContext
from ingest.providers.base import FetchError, MatchSource
from shared.config import Settings
from shared.models.domain import CompetitionDivisionKey, MatchRecord

MatchFactory = Callable[..., MatchRecord]


def make_match(
    round: int = 2,
    matchnum: int = 1,
    red: tuple[str, ...] = ("1111A", "2222B"),
    blue: tuple[str, ...] = ("3333C", "4444D"),
    red_score: int = 0,
    blue_score: int = 0,
    name: Optional[str] = None,
    instance: int = 1,
    scheduled: Optional[datetime] = None,
    started: Optional[datetime] = None,
) -> MatchRecord:
    """Build a MatchRecord from the provider's JSON shape."""
    payload: dict[str, Any] = {
        "id": round * 1000 + matchnum,
        "round": round,
        "instance": instance,
        "matchnum": matchnum,
        "name": name if name is not None else f"Qualifier #{matchnum}",
        "scheduled": scheduled.isoformat() if scheduled else None,
        "started": started.isoformat() if started else None,
        "alliances": [
            {"color": "red", "score": red_score, "teams": [{"team": {"name": t}} for t in red]},
            {"color": "blue", "score": blue_score, "teams": [{"team": {"name": t}} for t in blue]},
        ],
    }
    return MatchRecord.model_validate(payload)


@pytest.fixture
def match_factory() -> MatchFactory:
    return make_match


@pytest.fixture
def key() -> CompetitionDivisionKey:
    return CompetitionDivisionKey(competition_id=1, division_id=2)


@pytest.fixture
def ec_key_path(tmp_path: Path) -> Path:
    private_key = ec.generate_private_key(ec.SECP256R1())
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path = tmp_path / "AuthKey_TEST.p8"
    path.write_bytes(pem)
    return path


@pytest.fixture
def settings(ec_key_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        apple_team_id="TEAM123456",
        apple_key_id="KEY1234567",
        apple_key_path=str(ec_key_path),
        robotevents_token="re-token",
        poll_interval_s=0.05,
        metrics_enabled=False,
    )


class FakeSource(MatchSource):
    """Serves queued results per key; an Exception instance in the queue is raised."""

    name = "fake"

    def __init__(self) -> None:
        self.results: dict[CompetitionDivisionKey, list[Any]] = {}
        self.calls: list[CompetitionDivisionKey] = []
        self.started = False
        self.closed = False

    def queue(self, key: CompetitionDivisionKey, *results: Any) -> None:
        self.results.setdefault(key, []).extend(results)

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def fetch_matches(self, key: CompetitionDivisionKey) -> list[MatchRecord]:
        self.calls.append(key)
        queued = self.results.get(key) or [FetchError(key, "nothing queued")]
        result = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(result, Exception):
            raise result
        return list(result)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def mock_push() -> MagicMock:
    push = MagicMock()
    push.start = AsyncMock()
    push.close = AsyncMock()
    push.update_activity = AsyncMock()
    push.end_activity = AsyncMock()
    push.start_activity = AsyncMock()
    return push


@pytest.fixture
def context(settings: Settings, fake_source: FakeSource, mock_push: MagicMock) -> AppContext:
    return AppContext(settings=settings, source=fake_source, push=mock_push)
