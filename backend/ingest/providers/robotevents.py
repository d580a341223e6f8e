"""
RobotEvents provider connector.
Fetches division match lists from the RobotEvents v2 API and parses them into MatchRecords.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import ValidationError

from shared.models.domain import CompetitionDivisionKey, MatchRecord
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import FetchError, MatchSource

logger = get_logger(__name__)

MATCHES_PATH = "/events/{competition_id}/divisions/{division_id}/matches"
# Upper bound on pages per division; a large event has a few hundred matches.
MAX_PAGES = 50


class RobotEventsSource(MatchSource):
    """Match source backed by the RobotEvents v2 REST API."""

    name = "robotevents"

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://www.robotevents.com/api/v2",
        page_size: int = 250,
        timeout_s: float = 10.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._page_size = page_size
        self._http = ProviderHTTPClient(
            provider_name=self.name,
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
            },
            timeout_s=timeout_s,
            max_retries=max_retries,
            transport=transport,
        )

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def fetch_matches(self, key: CompetitionDivisionKey) -> list[MatchRecord]:
        path = MATCHES_PATH.format(competition_id=key.competition_id, division_id=key.division_id)
        matches: list[MatchRecord] = []
        page = 1

        while True:
            body = await self._fetch_page(key, path, page)
            matches.extend(self._parse_page(key, body))

            meta = body.get("meta") or {}
            last_page = _as_int(meta.get("last_page"), default=page)
            if page >= last_page or page >= MAX_PAGES:
                break
            page += 1

        logger.debug("matches_fetched", key=str(key), count=len(matches), pages=page)
        return matches

    async def _fetch_page(self, key: CompetitionDivisionKey, path: str, page: int) -> dict[str, Any]:
        try:
            resp = await self._http.get(path, params={"page": page, "per_page": self._page_size})
        except httpx.HTTPStatusError as exc:
            raise FetchError(key, f"HTTP {exc.response.status_code}", exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise FetchError(key, str(exc) or type(exc).__name__) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise FetchError(key, "response is not JSON") from exc
        if not isinstance(body, dict):
            raise FetchError(key, "unexpected response shape")
        return body

    def _parse_page(self, key: CompetitionDivisionKey, body: dict[str, Any]) -> list[MatchRecord]:
        data = body.get("data")
        if not isinstance(data, list):
            raise FetchError(key, "response has no data list")
        try:
            return [MatchRecord.model_validate(item) for item in data]
        except ValidationError as exc:
            raise FetchError(key, f"malformed match record: {exc.error_count()} error(s)") from exc


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
