"""
In-memory subscription registry.

Maps each (competition, division) pair to the devices watching it. All
mutations are serialized under one lock over the whole map; subscription
churn is human-driven and low-rate, so a single lock is enough.
"""
from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Mapping, Optional

from shared.models.domain import CompetitionDivisionKey, Subscription
from shared.utils.logging import get_logger, redact_token
from shared.utils.metrics import DIVISIONS_ACTIVE, SUBSCRIPTION_CHANGES, SUBSCRIPTIONS_ACTIVE

logger = get_logger(__name__)

RegistrySnapshot = Mapping[CompetitionDivisionKey, tuple[Subscription, ...]]


class SubscriptionRegistry:
    """Concurrent store of device subscriptions keyed by competition/division."""

    def __init__(self) -> None:
        self._subscriptions: dict[CompetitionDivisionKey, list[Subscription]] = {}
        self._lock = asyncio.Lock()

    async def add(self, key: CompetitionDivisionKey, team_name: str, device_token: str) -> None:
        """Append a subscription under key. Duplicate calls append duplicate entries."""
        async with self._lock:
            self._subscriptions.setdefault(key, []).append(
                Subscription(team_name=team_name, device_token=device_token)
            )
            self._record_gauges()
        SUBSCRIPTION_CHANGES.labels(op="add").inc()
        logger.info(
            "subscription_added",
            key=str(key),
            team=team_name,
            device_token=redact_token(device_token),
        )

    async def move(self, old_token: str, new_token: str) -> Optional[CompetitionDivisionKey]:
        """
        Relocate the subscription held by old_token to new_token.

        The team and key are kept. An empty new_token removes the subscription
        instead. Any other subscription already carrying new_token is
        dropped, so a token stays registered at most once. Returns the key
        that held old_token, or None when no subscription carries it.
        That case is a silent no-op.
        """
        async with self._lock:
            found = self._pop_first(old_token)
            if found is None:
                return None
            key, subscription = found
            if new_token:
                self._drop_token(new_token)
                self._subscriptions.setdefault(key, []).append(
                    Subscription(team_name=subscription.team_name, device_token=new_token)
                )
            self._prune_empty()
            self._record_gauges()

        SUBSCRIPTION_CHANGES.labels(op="move" if new_token else "remove").inc()
        logger.info(
            "subscription_moved" if new_token else "subscription_removed",
            key=str(key),
            old_device_token=redact_token(old_token),
            new_device_token=redact_token(new_token) if new_token else None,
        )
        return key

    async def remove(self, device_token: str) -> int:
        """Remove every subscription carrying device_token. Returns how many were dropped."""
        async with self._lock:
            removed = self._drop_token(device_token)
            self._prune_empty()
            self._record_gauges()

        if removed:
            SUBSCRIPTION_CHANGES.labels(op="remove").inc(removed)
            logger.info("subscription_removed", device_token=redact_token(device_token), count=removed)
        return removed

    async def snapshot(self) -> RegistrySnapshot:
        """Read-only copy of the whole map, safe to iterate while the registry changes."""
        async with self._lock:
            return MappingProxyType(
                {key: tuple(subs) for key, subs in self._subscriptions.items() if subs}
            )

    async def keys(self) -> list[CompetitionDivisionKey]:
        async with self._lock:
            return list(self._subscriptions)

    async def count(self) -> int:
        async with self._lock:
            return sum(len(subs) for subs in self._subscriptions.values())

    # ── Internals (caller holds the lock) ───────────────────────────────

    def _pop_first(self, device_token: str) -> Optional[tuple[CompetitionDivisionKey, Subscription]]:
        for key, subscriptions in self._subscriptions.items():
            for index, subscription in enumerate(subscriptions):
                if subscription.device_token == device_token:
                    del subscriptions[index]
                    return key, subscription
        return None

    def _drop_token(self, device_token: str) -> int:
        dropped = 0
        for key, subscriptions in self._subscriptions.items():
            kept = [s for s in subscriptions if s.device_token != device_token]
            dropped += len(subscriptions) - len(kept)
            self._subscriptions[key] = kept
        return dropped

    def _prune_empty(self) -> None:
        for key in [k for k, subs in self._subscriptions.items() if not subs]:
            del self._subscriptions[key]
            logger.debug("division_pruned", key=str(key))

    def _record_gauges(self) -> None:
        SUBSCRIPTIONS_ACTIVE.set(sum(len(subs) for subs in self._subscriptions.values()))
        DIVISIONS_ACTIVE.set(len(self._subscriptions))
