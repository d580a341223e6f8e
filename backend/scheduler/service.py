"""
Reconciliation service for the relay.
Polls every subscribed division on a fixed period, detects schedule/score
changes against the match cache, and pushes a fresh content state to each
device watching a changed division.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from builder.content_state import derive_content_state, division_complete
from ingest.providers.base import FetchError
from push.client import DeliveryError
from push.token import SigningError
from shared.models.domain import CompetitionDivisionKey, MatchRecord, Subscription
from shared.utils.logging import get_logger, redact_token
from shared.utils.metrics import FETCH_FAILURES, RECONCILE_CYCLE

if TYPE_CHECKING:
    from api.dependencies import AppContext

logger = get_logger(__name__)


@dataclass
class CycleReport:
    keys_polled: int = 0
    keys_changed: int = 0
    fetch_failures: int = 0
    pushes_sent: int = 0
    push_failures: int = 0
    signing_failed: bool = False


class _AbortCycle(Exception):
    """Nothing more can be pushed this cycle."""


class ReconciliationService:
    """
    Fetch-diff-notify loop.

    Each cycle:
    1. Snapshots the subscription registry (no lock held afterwards)
    2. Fetches the match list of every subscribed division
    3. Skips divisions whose list equals the cached one
    4. Replaces the cache, then derives and pushes a content state per device
    """

    def __init__(self, context: AppContext, poll_interval_s: float | None = None) -> None:
        self._ctx = context
        self._interval = poll_interval_s if poll_interval_s is not None else context.settings.poll_interval_s
        self._shutdown = asyncio.Event()

    @property
    def interval(self) -> float:
        return self._interval

    def request_shutdown(self) -> None:
        self._shutdown.set()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    async def run(self) -> None:
        """Run cycles until shutdown is requested. A running cycle is always allowed to finish."""
        logger.info("reconciliation_started", interval_s=self._interval)
        while not self._shutdown.is_set():
            try:
                await self.run_cycle()
            except Exception as exc:
                logger.error("reconciliation_cycle_error", error=str(exc), exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("reconciliation_stopped")

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        start = time.perf_counter()
        snapshot = await self._ctx.registry.snapshot()

        for key in await self._ctx.cache.keys():
            if key not in snapshot:
                await self._ctx.cache.discard(key)

        try:
            for key, subscriptions in snapshot.items():
                report.keys_polled += 1
                await self._reconcile_key(key, subscriptions, report)
        except _AbortCycle:
            report.signing_failed = True

        elapsed = time.perf_counter() - start
        RECONCILE_CYCLE.observe(elapsed)
        if report.keys_changed or report.fetch_failures or report.push_failures:
            logger.info(
                "reconciliation_cycle_done",
                keys_polled=report.keys_polled,
                keys_changed=report.keys_changed,
                fetch_failures=report.fetch_failures,
                pushes_sent=report.pushes_sent,
                push_failures=report.push_failures,
                duration_ms=round(elapsed * 1000, 2),
            )
        return report

    async def _reconcile_key(
        self,
        key: CompetitionDivisionKey,
        subscriptions: Sequence[Subscription],
        report: CycleReport,
    ) -> None:
        try:
            matches = await self._ctx.source.fetch_matches(key)
        except FetchError as exc:
            report.fetch_failures += 1
            FETCH_FAILURES.inc()
            logger.warning("match_fetch_failed", key=str(key), error=str(exc))
            return

        if not await self._ctx.cache.is_changed(key, matches):
            return

        await self._ctx.cache.replace(key, matches)
        report.keys_changed += 1
        logger.info("matches_changed", key=str(key), matches=len(matches), devices=len(subscriptions))

        complete = division_complete(matches)
        try:
            for subscription in subscriptions:
                await self._notify(subscription, matches, complete, report)
        except _AbortCycle:
            # Forget the list so the next cycle sees it as changed and pushes again.
            await self._ctx.cache.discard(key)
            raise

    async def _notify(
        self,
        subscription: Subscription,
        matches: Sequence[MatchRecord],
        complete: bool,
        report: CycleReport,
    ) -> None:
        try:
            state = derive_content_state(matches, subscription.team_name)
            if complete:
                await self._ctx.push.end_activity(
                    subscription.device_token,
                    state,
                    dismissal_delay_s=self._ctx.settings.end_dismissal_delay_s,
                )
            else:
                await self._ctx.push.update_activity(subscription.device_token, state)
        except DeliveryError as exc:
            report.push_failures += 1
            logger.warning(
                "push_delivery_failed",
                device_token=redact_token(subscription.device_token),
                status=exc.status_code,
                reason=exc.reason,
            )
            if exc.device_token_dead:
                await self._ctx.registry.remove(subscription.device_token)
            return
        except SigningError as exc:
            report.push_failures += 1
            logger.error("push_signing_failed", error=str(exc))
            raise _AbortCycle() from exc
        except Exception as exc:
            report.push_failures += 1
            logger.error(
                "push_unexpected_error",
                device_token=redact_token(subscription.device_token),
                error=str(exc),
                exc_info=True,
            )
            return

        report.pushes_sent += 1
