"""
FastAPI routes exposing the monitored account balance.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from balance_watch.dependencies import get_balance_monitor
from balance_watch.schemas import AccountSnapshot, SettingsUpdate, StatusIndicator
from balance_watch.services import BalanceMonitor

router = APIRouter()
logger = logging.getLogger(__name__)

MonitorDependency = Annotated[BalanceMonitor, Depends(get_balance_monitor)]


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/status", response_model=StatusIndicator, status_code=HTTPStatus.OK)
async def get_status(monitor: MonitorDependency) -> StatusIndicator:
    """Render the current snapshot as a status indicator."""
    return monitor.status()


@router.get("/snapshot", response_model=AccountSnapshot, status_code=HTTPStatus.OK)
async def get_snapshot(monitor: MonitorDependency) -> AccountSnapshot:
    """Return the raw cached snapshot for the active credential."""
    if not monitor.is_configured:
        raise HTTPException(
            status_code=HTTPStatus.CONFLICT,
            detail="Balance monitor is not configured.",
        )
    snapshot = monitor.current_snapshot()
    if snapshot is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail="No account data cached yet.",
        )
    return snapshot


@router.post("/refresh", status_code=HTTPStatus.ACCEPTED)
async def request_refresh(
    monitor: MonitorDependency,
    background_tasks: BackgroundTasks,
    wait: bool = Query(
        default=False,
        description="When true, respond only after the refresh has settled.",
    ),
) -> dict:
    """Trigger a forced refresh of the active credential."""
    if not monitor.is_configured:
        raise HTTPException(
            status_code=HTTPStatus.CONFLICT,
            detail="Balance monitor is not configured.",
        )

    if wait:
        started = await monitor.manual_refresh()
        return {"started": started, "status": monitor.status().model_dump(mode="json")}

    if monitor.is_refreshing:
        return {"started": False}
    background_tasks.add_task(monitor.manual_refresh)
    return {"started": True}


@router.put("/settings", status_code=HTTPStatus.OK)
async def update_settings(payload: SettingsUpdate, monitor: MonitorDependency) -> dict:
    """Replace the active credential and/or polling interval."""
    update: dict = {"token": payload.token}
    if payload.update_interval is not None:
        update["update_interval"] = payload.update_interval
    settings = monitor.settings.model_copy(update=update)

    refreshed = await monitor.apply_settings(settings)
    errors = settings.validation_errors()
    if errors:
        logger.info("Rejected settings update: %s", "; ".join(errors))
    return {
        "configured": not errors,
        "errors": errors,
        "refreshed": refreshed,
        "status": monitor.status().model_dump(mode="json"),
    }


@router.get("/notifications", status_code=HTTPStatus.OK)
async def drain_notifications(monitor: MonitorDependency) -> dict:
    """Return and clear the pending one-shot notices."""
    notices = monitor.notifications.drain()
    return {
        "notifications": [
            {
                "kind": notice.kind.value,
                "message": notice.message,
                "created_at": notice.created_at.isoformat(),
            }
            for notice in notices
        ]
    }
