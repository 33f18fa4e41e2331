"""
FastAPI application entrypoint for the account balance monitor.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI

from balance_watch.api.routes import router as api_router
from balance_watch.core.config import AppSettings, get_settings
from balance_watch.core.logging import configure_logging
from balance_watch.dependencies import build_balance_monitor

logger = logging.getLogger(__name__)


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        monitor = build_balance_monitor(settings)
        app.state.monitor = monitor
        startup: asyncio.Task[None] | None = None
        if settings.start_monitor:
            # The first refresh may take a while; serve requests meanwhile.
            startup = asyncio.create_task(monitor.start(), name="balance-monitor-start")
        try:
            yield
        finally:
            if startup is not None and not startup.done():
                startup.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await startup
            await monitor.stop()
            app.state.monitor = None

    app = FastAPI(
        title="Balance Watch",
        version="0.1.0",
        description="Caches and polls an account's subscription and credit balance.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
