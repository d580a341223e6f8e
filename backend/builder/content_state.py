"""
Content-state derivation for live activities.

Given the unordered match list of a division and the watched team, picks the
last completed match, the next match on the schedule and the team's next
match, and projects each into the display shape the widget renders.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional, Sequence

from shared.models.domain import (
    AllianceRecord,
    ContentState,
    DisplayAlliance,
    DisplayMatch,
    MatchRecord,
)
from shared.models.enums import AllianceColor, Round

# R16 is numbered 6 by the provider but is played between qualification and quarter-finals.
ROUND_ORDER_OVERRIDES: dict[int, float] = {
    Round.ROUND_OF_16.value: 2.5,
}

_NAME_STRIP = re.compile(r"[a-z#]")


def normalize_round(round_number: int) -> float:
    return ROUND_ORDER_OVERRIDES.get(round_number, float(round_number))


def match_sort_key(match: MatchRecord) -> tuple[float, int]:
    return normalize_round(match.round), match.matchnum


def sort_matches(matches: Iterable[MatchRecord]) -> list[MatchRecord]:
    return sorted(matches, key=match_sort_key)


def is_scored(match: MatchRecord) -> bool:
    """A match counts as played once any alliance has a nonzero score."""
    return any(alliance.score != 0 for alliance in match.alliances)


def clean_match_name(name: str) -> str:
    """'Qualifier #12' -> 'Q 12', 'QuarterFinal #2-1' -> 'QF 2-1'."""
    return _NAME_STRIP.sub("", name)


def _epoch(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value is not None else None


def _display_alliance(alliance: Optional[AllianceRecord], hide_score: bool) -> DisplayAlliance:
    if alliance is None:
        return DisplayAlliance()
    teams = alliance.teams[:2]
    return DisplayAlliance(
        team1=teams[0] if teams else "",
        team2=teams[1] if len(teams) > 1 else None,
        score=None if hide_score else alliance.score,
    )


def to_display_match(match: MatchRecord) -> DisplayMatch:
    red = match.alliance(AllianceColor.RED)
    blue = match.alliance(AllianceColor.BLUE)
    # 0-0 on both sides means not played yet, not a tie
    unplayed = (red is None or red.score == 0) and (blue is None or blue.score == 0)
    return DisplayMatch(
        name=clean_match_name(match.name),
        scheduled=_epoch(match.scheduled),
        start_time=_epoch(match.started),
        red_alliance=_display_alliance(red, unplayed),
        blue_alliance=_display_alliance(blue, unplayed),
    )


def _has_team(match: MatchRecord, team_name: str) -> bool:
    return any(name.upper() == team_name for name in match.team_names)


def derive_content_state(matches: Sequence[MatchRecord], team_name: str) -> ContentState:
    """
    Compute the three display matches for one subscriber.

    Args:
        matches: Match list as returned by the provider, in any order.
        team_name: Watched team, compared case-insensitively.

    Returns:
        ContentState whose fields are each None when there is nothing to show.
    """
    ordered = sort_matches(matches)
    if not ordered:
        return ContentState()

    team = team_name.upper()
    last_scored_index: Optional[int] = None
    team_next_index: Optional[int] = None
    team_settled = False

    for index, match in enumerate(ordered):
        scored = is_scored(match)
        if scored:
            last_scored_index = index

        if not team_settled and _has_team(match, team):
            team_next_index = index
            if not scored:
                team_settled = True

    if last_scored_index is None:
        last_match = None
        next_index = 0
    else:
        last_match = ordered[last_scored_index]
        next_index = last_scored_index + 1

    next_match = ordered[next_index] if next_index < len(ordered) else None
    team_next_match = ordered[team_next_index] if team_next_index is not None else None

    return ContentState(
        last_match=to_display_match(last_match) if last_match is not None else None,
        next_match=to_display_match(next_match) if next_match is not None else None,
        team_next_match=to_display_match(team_next_match) if team_next_match is not None else None,
    )


def division_complete(matches: Sequence[MatchRecord]) -> bool:
    """
    True once a final has been scored and nothing else is left to play.

    Elimination matches are only published after qualification ends, so a
    fully scored schedule without a final is not the end of the event.
    """
    if not any(m.round == Round.FINAL and is_scored(m) for m in matches):
        return False
    return all(is_scored(m) for m in matches)
