"""
Application context and dependency injection for the relay.
The context owns every shared resource; handlers and the reconciliation task
receive it explicitly instead of reaching for module-level state.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Request

from shared.config import Settings
from shared.store.match_cache import MatchCache
from shared.store.registry import SubscriptionRegistry
from ingest.providers.base import MatchSource
from ingest.providers.robotevents import RobotEventsSource
from push.client import LiveActivityClient
from push.token import PushTokenSource


@dataclass
class AppContext:
    settings: Settings
    source: MatchSource
    push: LiveActivityClient
    registry: SubscriptionRegistry = field(default_factory=SubscriptionRegistry)
    cache: MatchCache = field(default_factory=MatchCache)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        """Wire the production collaborators from loaded settings."""
        source = RobotEventsSource(
            api_token=settings.robotevents_token,
            base_url=settings.robotevents_base_url,
            page_size=settings.provider_page_size,
            timeout_s=settings.provider_request_timeout_s,
            max_retries=settings.provider_max_retries,
        )
        tokens = PushTokenSource(
            team_id=settings.apple_team_id,
            key_id=settings.apple_key_id,
            key_path=settings.apple_key_path,
            ttl_s=settings.token_refresh_s,
        )
        push = LiveActivityClient(
            token_source=tokens,
            topic=settings.apns_topic,
            base_url=settings.apns_base_url,
            priority=settings.apns_priority,
            timeout_s=settings.push_timeout_s,
        )
        return cls(settings=settings, source=source, push=push)

    async def start(self) -> None:
        await self.source.start()
        await self.push.start()

    async def close(self) -> None:
        await self.source.close()
        await self.push.close()


def get_context(request: Request) -> AppContext:
    """FastAPI dependency: returns the AppContext attached at startup."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("AppContext not initialized; the app lifespan has not run")
    return context
