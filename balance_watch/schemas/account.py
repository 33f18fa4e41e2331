"""
Pydantic models describing cached account state and its rendered form.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AccountIdentity(BaseModel):
    """Account details resolved from a credential (first fetch stage)."""

    identity: str = Field(..., description="Stable account identifier.")
    email: str = Field("", description="Account e-mail address.")
    plan_name: str = Field("", description="Name of the active subscription plan.")
    expiry_date: Optional[str] = Field(
        None, description="Subscription end date; None means no expiry."
    )


class AccountSnapshot(BaseModel):
    """Last known identity and balance for one credential."""

    identity: str = Field("", description="Account identifier; blank on error records.")
    email: str = ""
    plan_name: str = ""
    expiry_date: Optional[str] = None
    balance: str = Field("", description="Credit balance as a decimal string.")
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When this snapshot was written.",
    )
    last_error: Optional[str] = Field(
        None,
        description="Failure description; when set the snapshot is an error record.",
    )

    @classmethod
    def from_fetch(
        cls, identity: AccountIdentity, balance: str, *, captured_at: datetime
    ) -> "AccountSnapshot":
        return cls(
            identity=identity.identity,
            email=identity.email,
            plan_name=identity.plan_name,
            expiry_date=identity.expiry_date,
            balance=balance,
            captured_at=captured_at,
        )

    @classmethod
    def failure(cls, message: str, *, captured_at: datetime) -> "AccountSnapshot":
        """Build an error record: every data field blank, only the error kept."""
        return cls(captured_at=captured_at, last_error=message or "Unknown error")

    @property
    def is_error(self) -> bool:
        return self.last_error is not None

    @property
    def has_identity(self) -> bool:
        return bool(self.identity and self.identity.strip())

    def account_identity(self) -> Optional[AccountIdentity]:
        """Return the reusable identity part, or None when it is not trustworthy."""
        if self.is_error or not self.has_identity:
            return None
        return AccountIdentity(
            identity=self.identity,
            email=self.email,
            plan_name=self.plan_name,
            expiry_date=self.expiry_date,
        )


class IndicatorState(str, Enum):
    LOADING = "loading"
    NORMAL = "normal"
    NOT_CONFIGURED = "not_configured"
    ERROR = "error"


class IndicatorTier(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    ERROR = "error"


class StatusIndicator(BaseModel):
    """Everything a status bar style widget needs to draw itself."""

    state: IndicatorState
    text: str
    tooltip: str
    tier: IndicatorTier = IndicatorTier.NORMAL
    refreshing: bool = Field(
        False, description="True while a refresh is in flight."
    )


class SettingsUpdate(BaseModel):
    """Payload for replacing the active credential and polling interval."""

    token: str = Field(..., description="Bearer token for the account.")
    update_interval: Optional[int] = Field(
        None, description="Seconds between scheduled refreshes; unchanged when omitted."
    )


__all__ = [
    "AccountIdentity",
    "AccountSnapshot",
    "IndicatorState",
    "IndicatorTier",
    "SettingsUpdate",
    "StatusIndicator",
]
