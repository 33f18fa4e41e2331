"""
Two-stage account refresh: resolve the identity, then the balance.

Concurrent refreshes of the same credential share one in-flight task, and a
result is only written back while its credential is still the active one.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from balance_watch.clients.account_api import (
    AccountServiceError,
    MalformedResponseError,
    UnknownAccountError,
)
from balance_watch.core.logging import token_fingerprint
from balance_watch.schemas import AccountIdentity, AccountSnapshot
from balance_watch.services.account_cache import AccountCache

logger = logging.getLogger(__name__)


class AccountService(Protocol):
    async def resolve_identity(self, token: str) -> AccountIdentity:
        ...

    async def resolve_balance(self, identity: str, token: str) -> str:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshOrchestrator:
    """Fetch fresh account data and merge it into the :class:`AccountCache`."""

    def __init__(
        self,
        cache: AccountCache,
        service: AccountService,
        *,
        is_current: Optional[Callable[[str], bool]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._cache = cache
        self._service = service
        self._is_current = is_current or (lambda token: True)
        self._clock = clock or _utcnow
        self._inflight: Dict[str, asyncio.Task[AccountSnapshot]] = {}

    def bind_credential_check(self, is_current: Callable[[str], bool]) -> None:
        """Install the callback that says whether a credential is still active."""
        self._is_current = is_current

    def is_refreshing(self, token: str) -> bool:
        task = self._inflight.get(token)
        return task is not None and not task.done()

    async def refresh(self, token: str, force: bool = False) -> AccountSnapshot:
        """Refresh ``token`` and return the merged snapshot.

        Raises :class:`AccountServiceError` after recording an error snapshot.
        A call made while another refresh of the same token is running joins
        that refresh instead of starting a second one.
        """
        task = self._inflight.get(token)
        if task is None or task.done():
            task = asyncio.ensure_future(self._run(token, force))
            self._inflight[token] = task
            task.add_done_callback(lambda done: self._forget(token, done))
        else:
            logger.debug(
                "Joining in-flight refresh for %s", token_fingerprint(token)
            )
        return await asyncio.shield(task)

    def _forget(self, token: str, task: asyncio.Task[AccountSnapshot]) -> None:
        if self._inflight.get(token) is task:
            del self._inflight[token]

    async def _run(self, token: str, force: bool) -> AccountSnapshot:
        fingerprint = token_fingerprint(token)
        try:
            identity = await self._resolve_identity(token, force)
            balance = await self._service.resolve_balance(identity.identity, token)
            if not balance or not balance.strip():
                raise MalformedResponseError("Balance lookup returned an empty value")
        except AccountServiceError as exc:
            self._record_failure(token, exc)
            raise
        except Exception as exc:
            error = UnknownAccountError(str(exc) or exc.__class__.__name__)
            self._record_failure(token, error)
            raise error from exc

        snapshot = AccountSnapshot.from_fetch(
            identity, balance, captured_at=self._clock()
        )
        if not self._is_current(token):
            logger.info(
                "Discarding refresh result for %s: credential is no longer active",
                fingerprint,
            )
            return snapshot

        stored = self._cache.write(token, snapshot)
        logger.info("Refreshed account data for %s", fingerprint)
        return stored

    async def _resolve_identity(self, token: str, force: bool) -> AccountIdentity:
        if not force:
            cached = self._cache.read(token)
            if cached is not None:
                reusable = cached.account_identity()
                if reusable is not None:
                    logger.debug(
                        "Reusing cached identity for %s", token_fingerprint(token)
                    )
                    return reusable
                if not cached.is_error:
                    # Data record without a usable identity: disown it first.
                    self._cache.invalidate(token)

        logger.debug(
            "Resolving identity for %s remotely (force=%s)",
            token_fingerprint(token),
            force,
        )
        identity = await self._service.resolve_identity(token)
        if not identity.identity or not identity.identity.strip():
            raise MalformedResponseError("Identity resolution returned empty")
        return identity

    def _record_failure(self, token: str, error: AccountServiceError) -> None:
        fingerprint = token_fingerprint(token)
        if not self._is_current(token):
            logger.info(
                "Refresh for %s failed after the credential was replaced: %s",
                fingerprint,
                error.message,
            )
            return

        logger.warning(
            "Refresh for %s failed (%s): %s",
            fingerprint,
            error.kind.value,
            error.message,
        )
        self._cache.invalidate(token)
        self._cache.write(
            token, AccountSnapshot.failure(error.message, captured_at=self._clock())
        )


__all__ = ["AccountService", "RefreshOrchestrator"]
