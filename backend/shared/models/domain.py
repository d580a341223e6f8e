"""
Pydantic v2 domain models for the EchoPulse relay.
Provider records are parsed once and never mutated; display models are the
camelCase wire shape decoded by the iOS widget.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.models.enums import AllianceColor


# ── Base ────────────────────────────────────────────────────────────────
class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ── Registry entities ───────────────────────────────────────────────────
class CompetitionDivisionKey(FrozenModel):
    """Partition key for subscriptions and cached match lists."""
    competition_id: int
    division_id: int

    def __str__(self) -> str:
        return f"{self.competition_id}/{self.division_id}"


class Subscription(FrozenModel):
    team_name: str
    device_token: str


# ── Provider records ────────────────────────────────────────────────────
class AllianceRecord(FrozenModel):
    color: AllianceColor
    score: int = 0
    teams: tuple[str, ...] = ()

    @field_validator("teams", mode="before")
    @classmethod
    def flatten_teams(cls, value: Any) -> Any:
        # Provider shape: [{"team": {"id": 1, "name": "1234A"}, "sitting": false}]
        if not isinstance(value, (list, tuple)):
            return value
        names: list[str] = []
        for entry in value:
            if isinstance(entry, dict):
                team = entry.get("team", entry)
                names.append(str(team.get("name", "")) if isinstance(team, dict) else str(team))
            else:
                names.append(str(entry))
        return tuple(names)

    @field_validator("score", mode="before")
    @classmethod
    def null_score(cls, value: Any) -> Any:
        return 0 if value is None else value


class MatchRecord(FrozenModel):
    """One scheduled, in-progress or completed match as returned by the provider."""
    id: int = 0
    round: int
    instance: int = 1
    matchnum: int
    name: str = ""
    scheduled: Optional[datetime] = None
    started: Optional[datetime] = None
    alliances: tuple[AllianceRecord, ...] = ()

    def alliance(self, color: AllianceColor) -> Optional[AllianceRecord]:
        return next((a for a in self.alliances if a.color == color), None)

    @property
    def team_names(self) -> list[str]:
        return [name for a in self.alliances for name in a.teams]


# ── Display / wire models ───────────────────────────────────────────────
class DisplayAlliance(WireModel):
    team1: str = ""
    team2: Optional[str] = None
    score: Optional[int] = None


class DisplayMatch(WireModel):
    name: str
    scheduled: Optional[int] = None
    start_time: Optional[int] = None
    red_alliance: DisplayAlliance = Field(default_factory=DisplayAlliance)
    blue_alliance: DisplayAlliance = Field(default_factory=DisplayAlliance)


class ContentState(WireModel):
    """Live activity content state pushed to a device."""
    last_match: Optional[DisplayMatch] = None
    next_match: Optional[DisplayMatch] = None
    team_next_match: Optional[DisplayMatch] = None
