"""
Factory functions that assemble the balance monitor and expose it to routes.
"""

from http import HTTPStatus

from fastapi import HTTPException, Request

from balance_watch.clients import AccountApiClient, SQLiteStore
from balance_watch.core.config import AppSettings, get_settings
from balance_watch.services import (
    AccountCache,
    BalanceMonitor,
    NotificationCenter,
    RefreshOrchestrator,
)


def build_balance_monitor(settings: AppSettings | None = None) -> BalanceMonitor:
    """Construct a monitor together with its cache, client and orchestrator."""
    settings = settings or get_settings()
    monitor_settings = settings.monitor

    store = SQLiteStore(monitor_settings.cache_db_path)
    cache = AccountCache(store)
    orchestrator = RefreshOrchestrator(
        cache, AccountApiClient.from_settings(monitor_settings)
    )
    notifications = NotificationCenter(max_pending=settings.notification_backlog or 20)
    return BalanceMonitor(
        settings=monitor_settings,
        cache=cache,
        orchestrator=orchestrator,
        notifications=notifications,
    )


def get_balance_monitor(request: Request) -> BalanceMonitor:
    """FastAPI dependency returning the monitor owned by the running app."""
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail="Balance monitor is not running.",
        )
    return monitor


__all__ = ["build_balance_monitor", "get_balance_monitor"]
