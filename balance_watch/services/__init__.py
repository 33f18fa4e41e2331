"""Service layer exports."""

from .account_cache import AccountCache
from .monitor import BalanceMonitor, MonitorState
from .notifications import Notice, NoticeKind, NotificationCenter
from .refresh import RefreshOrchestrator
from .status_indicator import balance_tier, format_balance, render_status

__all__ = [
    "AccountCache",
    "BalanceMonitor",
    "MonitorState",
    "Notice",
    "NoticeKind",
    "NotificationCenter",
    "RefreshOrchestrator",
    "balance_tier",
    "format_balance",
    "render_status",
]
