"""
Abstract base class for upstream match sources.
Defines the contract the reconciliation loop relies on.
"""
from __future__ import annotations

import abc
from typing import Optional

from shared.models.domain import CompetitionDivisionKey, MatchRecord


class FetchError(Exception):
    """Upstream unavailable or returned a malformed response."""

    def __init__(self, key: CompetitionDivisionKey, message: str, status_code: Optional[int] = None) -> None:
        self.key = key
        self.status_code = status_code
        super().__init__(f"Fetching matches for {key} failed: {message}")


class MatchSource(abc.ABC):
    """Read-only source of division match lists."""

    name: str = "unknown"

    async def start(self) -> None:
        """Acquire network resources."""

    async def close(self) -> None:
        """Release network resources."""

    @abc.abstractmethod
    async def fetch_matches(self, key: CompetitionDivisionKey) -> list[MatchRecord]:
        """
        Fetch the full match list of a division, across all pages.

        Raises:
            FetchError: The provider could not be reached or its payload was unusable.
        """
        ...
