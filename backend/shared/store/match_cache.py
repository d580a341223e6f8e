"""
Last-seen match list per competition/division.
Lets the reconciliation loop tell a changed schedule from a no-op poll.
"""
from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

from shared.models.domain import CompetitionDivisionKey, MatchRecord


class MatchCache:
    """Concurrent store of the most recent successfully fetched match list."""

    def __init__(self) -> None:
        self._matches: dict[CompetitionDivisionKey, tuple[MatchRecord, ...]] = {}
        self._lock = asyncio.Lock()

    async def get_last_known(self, key: CompetitionDivisionKey) -> tuple[MatchRecord, ...]:
        async with self._lock:
            return self._matches.get(key, ())

    async def replace(self, key: CompetitionDivisionKey, matches: Iterable[MatchRecord]) -> None:
        async with self._lock:
            self._matches[key] = tuple(matches)

    async def is_changed(self, key: CompetitionDivisionKey, matches: Sequence[MatchRecord]) -> bool:
        """Order-sensitive value comparison against the cached list."""
        async with self._lock:
            if key not in self._matches:
                return True
            return self._matches[key] != tuple(matches)

    async def discard(self, key: CompetitionDivisionKey) -> None:
        async with self._lock:
            self._matches.pop(key, None)

    async def keys(self) -> list[CompetitionDivisionKey]:
        async with self._lock:
            return list(self._matches)
