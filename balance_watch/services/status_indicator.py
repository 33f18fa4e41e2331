"""Render an account snapshot into a compact status indicator."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from balance_watch.schemas import (
    AccountSnapshot,
    IndicatorState,
    IndicatorTier,
    StatusIndicator,
)

LOW_BALANCE_THRESHOLD = Decimal("10")
_CENTS = Decimal("0.01")


def _parse_balance(balance: str) -> Optional[Decimal]:
    try:
        value = Decimal(balance.strip())
    except (InvalidOperation, AttributeError):
        return None
    return value if value.is_finite() else None


def format_balance(balance: str) -> str:
    """Show a balance with exactly two decimals; non-numeric input is returned as-is."""
    value = _parse_balance(balance)
    if value is None:
        return balance
    try:
        return f"{value.quantize(_CENTS, rounding=ROUND_HALF_UP):.2f}"
    except InvalidOperation:
        return balance


def balance_tier(balance: str) -> IndicatorTier:
    value = _parse_balance(balance)
    if value is None:
        return IndicatorTier.NORMAL
    if value <= 0:
        return IndicatorTier.ERROR
    if value < LOW_BALANCE_THRESHOLD:
        return IndicatorTier.WARNING
    return IndicatorTier.NORMAL


def render_status(
    snapshot: Optional[AccountSnapshot],
    *,
    configured: bool,
    refreshing: bool = False,
) -> StatusIndicator:
    """Pick one of the four indicator states for the current snapshot."""
    if not configured:
        return StatusIndicator(
            state=IndicatorState.NOT_CONFIGURED,
            text="Balance: not configured",
            tooltip="No API token configured.\nUpdate the settings to start monitoring.",
            tier=IndicatorTier.WARNING,
        )

    if snapshot is None:
        return StatusIndicator(
            state=IndicatorState.LOADING,
            text="Balance: loading...",
            tooltip="Fetching account balance...",
            refreshing=refreshing,
        )

    if snapshot.is_error:
        return StatusIndicator(
            state=IndicatorState.ERROR,
            text="Balance: error",
            tooltip=f"Balance refresh failed:\n{snapshot.last_error}",
            tier=IndicatorTier.ERROR,
            refreshing=refreshing,
        )

    formatted = format_balance(snapshot.balance)
    lines = [f"Remaining credits: {formatted}"]
    if snapshot.email:
        lines.append(f"Account: {snapshot.email}")
    if snapshot.plan_name:
        lines.append(f"Plan: {snapshot.plan_name}")
    lines.append(f"Expires: {snapshot.expiry_date or 'never'}")
    lines.append(f"Updated: {snapshot.captured_at.isoformat(timespec='seconds')}")

    return StatusIndicator(
        state=IndicatorState.NORMAL,
        text=f"Balance: {formatted}",
        tooltip="\n".join(lines),
        tier=balance_tier(snapshot.balance),
        refreshing=refreshing,
    )


__all__ = ["balance_tier", "format_balance", "render_status"]
