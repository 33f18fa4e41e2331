"""
HTTP client for the remote account service.

Resolves an account from a bearer token and reads its credit balance. Every
transport or HTTP failure is classified here, once, into ``ErrorKind`` so the
callers only ever decide what to do with a failure, never what it means.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from balance_watch.core.config import MonitorSettings
from balance_watch.schemas import AccountIdentity


class ErrorKind(str, Enum):
    NETWORK_UNREACHABLE = "network_unreachable"
    BAD_REQUEST = "bad_request"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    HTTP_UNKNOWN = "http_unknown"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


_STATUS_KINDS: Dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
}

_STATUS_HINTS: Dict[ErrorKind, str] = {
    ErrorKind.BAD_REQUEST: "bad request, check that the token is correct",
    ErrorKind.UNAUTHENTICATED: "authentication failed, check that the token is still valid",
    ErrorKind.FORBIDDEN: "access denied, check the token permissions",
    ErrorKind.NOT_FOUND: "resource not found, check the account identifier",
    ErrorKind.RATE_LIMITED: "too many requests, try again later",
    ErrorKind.SERVER_ERROR: "server error, try again later",
    ErrorKind.HTTP_UNKNOWN: "unexpected response",
}


def classify_status(status_code: int) -> ErrorKind:
    """Map a non-success HTTP status to its error kind."""
    if status_code in _STATUS_KINDS:
        return _STATUS_KINDS[status_code]
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.HTTP_UNKNOWN


class AccountServiceError(Exception):
    """Base class for classified account service failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        kind: Optional[ErrorKind] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if kind is not None:
            self.kind = kind

    @property
    def requires_reconfiguration(self) -> bool:
        """True when the user has to replace or fix the configured token."""
        return self.kind in (ErrorKind.UNAUTHENTICATED, ErrorKind.FORBIDDEN)

    @property
    def is_network_error(self) -> bool:
        return self.kind is ErrorKind.NETWORK_UNREACHABLE


class NetworkUnreachableError(AccountServiceError):
    """Raised when no response was received (connect failure or timeout)."""

    kind = ErrorKind.NETWORK_UNREACHABLE


class HttpRejectedError(AccountServiceError):
    """Raised when the service answered with a non-success status."""

    def __init__(self, context: str, *, status_code: int) -> None:
        kind = classify_status(status_code)
        message = f"{context}: HTTP {status_code} - {_STATUS_HINTS[kind]}"
        super().__init__(message, status_code=status_code, kind=kind)


class MalformedResponseError(AccountServiceError):
    """Raised when a response arrived but lacks required, non-empty fields."""

    kind = ErrorKind.MALFORMED_RESPONSE


class UnknownAccountError(AccountServiceError):
    """Raised for failures that fit no other category."""

    kind = ErrorKind.UNKNOWN


class AccountApiClient:
    """Resolve account identity and credit balance for a bearer token."""

    DEFAULT_BASE_URL = "https://portal.withorb.com/api/v1"
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        pricing_unit_id: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._pricing_unit_id = pricing_unit_id
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: MonitorSettings) -> "AccountApiClient":
        return cls(
            base_url=settings.base_url,
            pricing_unit_id=settings.pricing_unit_id,
            timeout=settings.request_timeout,
        )

    async def resolve_identity(self, token: str) -> AccountIdentity:
        """Look up the subscription attached to ``token``.

        The identity string is returned as received, even when blank; deciding
        whether a blank identity is usable belongs to the caller.
        """
        context = "Failed to fetch account info"
        payload = await self._get_json(
            "/subscriptions_from_link", params={"token": token}, context=context
        )

        subscriptions = payload.get("data")
        if not isinstance(subscriptions, list) or not subscriptions:
            raise MalformedResponseError(
                f"{context}: response is missing the 'data' array or it is empty"
            )

        subscription = subscriptions[0]
        customer = subscription.get("customer") if isinstance(subscription, dict) else None
        plan = subscription.get("plan") if isinstance(subscription, dict) else None
        if not isinstance(customer, dict) or not isinstance(plan, dict):
            raise MalformedResponseError(
                f"{context}: response is missing customer or plan details"
            )

        customer_id = customer.get("id")
        email = customer.get("email")
        plan_name = plan.get("name")
        if customer_id is None or email is None or plan_name is None:
            raise MalformedResponseError(
                f"{context}: response is missing required account fields"
            )

        end_date = subscription.get("end_date")
        return AccountIdentity(
            identity=str(customer_id),
            email=str(email),
            plan_name=str(plan_name),
            expiry_date=str(end_date) if end_date else None,
        )

    async def resolve_balance(self, identity: str, token: str) -> str:
        """Return the credits balance for ``identity`` as a decimal string."""
        context = "Failed to fetch balance"
        payload = await self._get_json(
            f"/customers/{quote(identity, safe='')}/ledger_summary",
            params={"pricing_unit_id": self._pricing_unit_id, "token": token},
            context=context,
        )

        balance = payload.get("credits_balance")
        if balance is None or isinstance(balance, (dict, list, bool)):
            raise MalformedResponseError(
                f"{context}: response is missing the 'credits_balance' field"
            )
        return str(balance)

    async def _get_json(
        self, path: str, *, params: Dict[str, str], context: str
    ) -> Dict[str, Any]:
        headers = {
            "User-Agent": self.USER_AGENT,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self._base_url}{path}", params=params, headers=headers
                )
        except httpx.TimeoutException as exc:
            raise NetworkUnreachableError(
                f"{context}: request timed out after {self._timeout:g}s"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkUnreachableError(
                f"{context}: network connection failed, check your connection"
            ) from exc
        except httpx.HTTPError as exc:
            raise UnknownAccountError(f"{context}: {exc}") from exc

        if not response.is_success:
            raise HttpRejectedError(context, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{context}: response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"{context}: unexpected response shape")
        return payload


__all__ = [
    "AccountApiClient",
    "AccountServiceError",
    "ErrorKind",
    "HttpRejectedError",
    "MalformedResponseError",
    "NetworkUnreachableError",
    "UnknownAccountError",
    "classify_status",
]
