"""Expose dependency helpers for FastAPI routers."""

from .clients import build_balance_monitor, get_balance_monitor

__all__ = [
    "build_balance_monitor",
    "get_balance_monitor",
]
