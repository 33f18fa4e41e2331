"""Public schema exports."""

from .account import (
    AccountIdentity,
    AccountSnapshot,
    IndicatorState,
    IndicatorTier,
    SettingsUpdate,
    StatusIndicator,
)

__all__ = [
    "AccountIdentity",
    "AccountSnapshot",
    "IndicatorState",
    "IndicatorTier",
    "SettingsUpdate",
    "StatusIndicator",
]
