"""
FastAPI application factory for the EchoPulse relay.

Creates the app with:
- Subscription routes (subscribe, change)
- Middleware stack
- Health and status endpoints
- Lifespan management: builds the AppContext, runs the reconciliation
  task, and lets its current cycle finish on shutdown
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import uvicorn
from fastapi import Depends, FastAPI

from shared.config import ConfigError, get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import AppContext, get_context
from api.middleware import DEFAULT_MAX_BODY_BYTES, setup_middleware
from api.routes.subscriptions import router as subscriptions_router
from scheduler.service import ReconciliationService

logger = get_logger(__name__)


def _build_lifespan(preset: Optional[AppContext]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Startup: load settings (fatal when incomplete), start clients and the
        reconciliation task. Shutdown: stop polling after the running cycle,
        then close clients.
        """
        if preset is None:
            try:
                settings = get_settings()
            except ConfigError as exc:
                logger.critical("config_invalid", missing=exc.missing)
                raise
            setup_logging("relay", settings)
            start_metrics_server(settings.metrics_port, settings.metrics_enabled)
            context = AppContext.from_settings(settings)
        else:
            context = preset

        await context.start()
        app.state.context = context

        service = ReconciliationService(context)
        app.state.reconciliation = service
        task = asyncio.create_task(service.run())

        logger.info(
            "relay_service_started",
            port=context.settings.api_port,
            poll_interval_s=service.interval,
        )

        try:
            yield
        finally:
            service.request_shutdown()
            await task
            await context.close()
            logger.info("relay_service_stopped")

    return lifespan


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without network clients or a poll loop."""
    yield


def create_app(context: Optional[AppContext] = None, *, use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Prebuilt AppContext; when omitted the lifespan builds one from settings.
        use_lifespan: Set False for testing; the given context is attached as-is.
    """
    app = FastAPI(
        title="EchoPulse Relay",
        description="Live activity relay for competition match results",
        version="1.0.0",
        lifespan=_build_lifespan(context) if use_lifespan else _noop_lifespan,
    )
    if context is not None and not use_lifespan:
        app.state.context = context

    max_body = context.settings.max_body_bytes if context is not None else DEFAULT_MAX_BODY_BYTES
    setup_middleware(app, max_body_bytes=max_body)

    app.include_router(subscriptions_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "relay"}

    @app.get("/v1/status", tags=["system"])
    async def system_status(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        """Subscription counts and the polling period."""
        return {
            "status": "ok",
            "subscriptions": await ctx.registry.count(),
            "divisions": len(await ctx.registry.keys()),
            "poll_interval_s": ctx.settings.poll_interval_s,
        }

    return app


def main() -> None:
    """Process entrypoint: fail fast on missing configuration, then serve."""
    try:
        settings = get_settings()
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc
    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
