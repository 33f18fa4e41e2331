"""
Polling scheduler that keeps the active credential's snapshot fresh.

The monitor owns the timer, the single "refreshing" guard and credential
rotation. Refresh failures never escape it: they end up in the cache as error
snapshots and, for authentication problems, as a one-shot notice.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable, Optional, Set

from balance_watch.clients.account_api import AccountServiceError
from balance_watch.core.config import MonitorSettings
from balance_watch.core.logging import token_fingerprint
from balance_watch.schemas import AccountSnapshot, StatusIndicator
from balance_watch.services.account_cache import AccountCache
from balance_watch.services.notifications import NoticeKind, NotificationCenter
from balance_watch.services.refresh import RefreshOrchestrator
from balance_watch.services.status_indicator import render_status

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    REFRESHING = "refreshing"
    STOPPED = "stopped"


class BalanceMonitor:
    """Drive :class:`RefreshOrchestrator` from a timer and external triggers."""

    def __init__(
        self,
        *,
        settings: MonitorSettings,
        cache: AccountCache,
        orchestrator: RefreshOrchestrator,
        notifications: NotificationCenter,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._orchestrator = orchestrator
        self._notifications = notifications
        self._state = MonitorState.UNINITIALIZED
        self._timer: Optional[asyncio.Task[None]] = None
        # Ticks run outside the timer task so cancelling the timer never
        # interrupts a refresh that is already in flight.
        self._ticks: Set[asyncio.Task[bool]] = set()
        # Last token that was part of a valid configuration.
        self._last_token = settings.token if settings.is_valid else ""
        self._orchestrator.bind_credential_check(self._is_active_token)

    # -- introspection -------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def settings(self) -> MonitorSettings:
        return self._settings

    @property
    def notifications(self) -> NotificationCenter:
        return self._notifications

    @property
    def is_configured(self) -> bool:
        return self._settings.is_valid

    @property
    def is_refreshing(self) -> bool:
        return self._state is MonitorState.REFRESHING

    def _is_active_token(self, token: str) -> bool:
        return self.is_configured and token == self._settings.token

    # -- presentation --------------------------------------------------

    def current_snapshot(self, token: Optional[str] = None) -> Optional[AccountSnapshot]:
        """Pure read of the best snapshot available right now."""
        token = token if token is not None else self._settings.token
        if not token:
            return None
        return self._cache.read(token)

    def status(self) -> StatusIndicator:
        snapshot = self.current_snapshot() if self.is_configured else None
        return render_status(
            snapshot, configured=self.is_configured, refreshing=self.is_refreshing
        )

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._cache.subscribe(listener)

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        """Sweep stale cache entries, arm the timer and refresh once."""
        if self._state is not MonitorState.UNINITIALIZED:
            logger.warning("Balance monitor already started (state=%s)", self._state.value)
            return

        self._cache.sweep_expired()
        self._cache.purge_legacy()
        self._state = MonitorState.IDLE

        errors = self._settings.validation_errors()
        if errors:
            logger.warning("Balance monitor not configured: %s", "; ".join(errors))
            return

        logger.info(
            "Balance monitor started for %s (every %ss)",
            token_fingerprint(self._settings.token),
            self._settings.update_interval,
        )
        self._start_timer()
        await self._trigger(force=False, reason="startup")

    async def stop(self) -> None:
        if self._state is MonitorState.STOPPED:
            return
        self._state = MonitorState.STOPPED
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        logger.info("Balance monitor stopped")

    # -- triggers ------------------------------------------------------

    async def tick(self) -> bool:
        """Scheduled refresh; respects the cache."""
        return await self._trigger(force=False, reason="timer")

    async def manual_refresh(self) -> bool:
        """User-requested refresh; bypasses the cached identity."""
        return await self._trigger(force=True, reason="manual")

    async def apply_settings(self, settings: MonitorSettings) -> bool:
        """React to a configuration change; returns whether a refresh ran."""
        if self._state is MonitorState.STOPPED:
            return False

        self._settings = settings
        errors = settings.validation_errors()
        if errors:
            self._stop_timer()
            self._notifications.push(NoticeKind.CONFIG_ERROR, "; ".join(errors))
            return False

        previous_token = self._last_token
        self._last_token = settings.token
        force = False
        if previous_token != settings.token:
            logger.info(
                "Credential changed from %s to %s; forcing refresh",
                token_fingerprint(previous_token),
                token_fingerprint(settings.token),
            )
            if previous_token:
                self._cache.invalidate(previous_token)
            force = True
        elif not self._cache.is_account_info_valid(settings.token):
            logger.info("Cached account info is not valid; forcing refresh")
            force = True

        self._notifications.push(NoticeKind.CONFIG_UPDATED, "Balance monitor settings updated")
        if self._state is MonitorState.IDLE or self._state is MonitorState.REFRESHING:
            self._start_timer()
        return await self._trigger(force=force, reason="settings")

    async def _trigger(self, *, force: bool, reason: str) -> bool:
        if self._state is not MonitorState.IDLE:
            if self._state is MonitorState.REFRESHING:
                logger.debug("Refresh already running; dropping %s trigger", reason)
            return False
        if not self.is_configured:
            return False

        token = self._settings.token
        self._state = MonitorState.REFRESHING
        try:
            await self._orchestrator.refresh(token, force=force)
        except AccountServiceError as exc:
            if exc.requires_reconfiguration and self._is_active_token(token):
                self._notifications.push(
                    NoticeKind.RECONFIGURE,
                    f"Authentication failed: {exc.message}. Update the API token.",
                )
            elif exc.is_network_error:
                logger.info("Account service unreachable; waiting for the next trigger")
        except Exception:
            logger.exception("Unexpected failure during %s refresh", reason)
        finally:
            if self._state is MonitorState.REFRESHING:
                self._state = MonitorState.IDLE

        # The credential rotated while this refresh was running; the rotation
        # trigger was dropped, so fetch the new credential now.
        if (
            self._state is MonitorState.IDLE
            and self.is_configured
            and self._settings.token != token
        ):
            await self._trigger(force=True, reason="rotation")
        return True

    # -- timer ---------------------------------------------------------

    def _start_timer(self) -> None:
        self._stop_timer()
        interval = self._settings.update_interval
        self._timer = asyncio.create_task(
            self._run_timer(interval), name="balance-monitor-timer"
        )

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            tick = asyncio.create_task(self.tick(), name="balance-monitor-tick")
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            # Cancelling the timer only abandons the wait; the tick settles on its own.
            await asyncio.shield(tick)


__all__ = ["BalanceMonitor", "MonitorState"]
