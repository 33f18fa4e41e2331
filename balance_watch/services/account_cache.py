"""
Credential-scoped cache of account snapshots with TTL expiry.

Snapshots live in the shared key-value store under a key derived from a hash
of the credential, so the token itself never reaches disk. Storage failures
are logged and absorbed: reads fall back to "absent" and writes are dropped.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from balance_watch.clients.sqlite_store import SQLiteStore
from balance_watch.core.logging import token_fingerprint
from balance_watch.schemas import AccountSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_PARTITION = "account_snapshot"
SNAPSHOT_SCHEMA_VERSION = 2
DEFAULT_TTL = timedelta(hours=24)

_TOKEN_PREFIX = "token#"
# Earlier releases kept a bare customer id per token and one global balance.
_LEGACY_CUSTOMER_PREFIX = "customer#"
LEGACY_BALANCE_KEY = ("legacy", "balance_cache")

_TIMESTAMP_STEP = timedelta(microseconds=1)

Clock = Callable[[], datetime]
ChangeListener = Callable[[], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def snapshot_sort_key(token: str) -> str:
    """Derive the storage key for a credential (exact match, no normalization)."""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{_TOKEN_PREFIX}{digest}"


class AccountCache:
    """Last known :class:`AccountSnapshot` per credential."""

    def __init__(
        self,
        store: SQLiteStore,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._listeners: list[ChangeListener] = []
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        # Latest captured_at written per key; survives invalidation.
        self._high_water: Dict[str, datetime] = {}

    # -- subscriptions -------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a no-argument callback fired after every write or invalidation."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Cache change listener failed")

    # -- reads ---------------------------------------------------------

    def read(self, token: str) -> Optional[AccountSnapshot]:
        """Return the stored snapshot, or None when missing or past its TTL."""
        snapshot = self._load(snapshot_sort_key(token))
        if snapshot is None:
            return None
        if self._is_expired(snapshot):
            logger.debug("Snapshot for %s expired", token_fingerprint(token))
            return None
        return snapshot

    def is_account_info_valid(self, token: str) -> bool:
        """True when an unexpired snapshot with a usable identity is cached."""
        snapshot = self.read(token)
        return snapshot is not None and snapshot.has_identity

    def _load(self, sort_key: str) -> Optional[AccountSnapshot]:
        try:
            raw = self._store.get_item(
                partition_key=SNAPSHOT_PARTITION, sort_key=sort_key
            )
        except Exception:
            logger.warning("Failed to read cached snapshot", exc_info=True)
            return None
        if raw is None:
            return None
        return self._parse(raw)

    @staticmethod
    def _parse(raw: Dict[str, Any]) -> Optional[AccountSnapshot]:
        payload = raw.get("snapshot")
        if not isinstance(payload, dict):
            logger.info("Ignoring cached record in a legacy or unknown format")
            return None
        try:
            return AccountSnapshot.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed cached snapshot", exc_info=True)
            return None

    def _is_expired(self, snapshot: AccountSnapshot) -> bool:
        age = _as_utc(self._clock()) - _as_utc(snapshot.captured_at)
        return age > self._ttl

    # -- writes --------------------------------------------------------

    def _lock_for(self, sort_key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(sort_key)
            if lock is None:
                lock = self._key_locks[sort_key] = threading.Lock()
            return lock

    def write(self, token: str, snapshot: AccountSnapshot) -> AccountSnapshot:
        """Replace the stored snapshot and notify subscribers.

        ``captured_at`` is nudged forward when it would not be strictly later
        than the last one written for this credential, including writes that
        were invalidated since. Returns the snapshot as stored.
        """
        sort_key = snapshot_sort_key(token)
        with self._lock_for(sort_key):
            captured_at = _as_utc(snapshot.captured_at)
            floor = self._high_water.get(sort_key)
            previous = self._load(sort_key)
            if previous is not None:
                previous_at = _as_utc(previous.captured_at)
                if floor is None or previous_at > floor:
                    floor = previous_at
            if floor is not None and captured_at <= floor:
                captured_at = floor + _TIMESTAMP_STEP
            stored = snapshot.model_copy(update={"captured_at": captured_at})
            self._high_water[sort_key] = captured_at

            item = {
                "pk": SNAPSHOT_PARTITION,
                "sk": sort_key,
                "schema": SNAPSHOT_SCHEMA_VERSION,
                "snapshot": stored.model_dump(mode="json"),
            }
            try:
                self._store.put_item(item)
            except Exception:
                logger.exception(
                    "Failed to persist snapshot for %s", token_fingerprint(token)
                )
                return stored

        self._notify()
        return stored

    def invalidate(self, token: str) -> None:
        """Drop the snapshot for one credential."""
        sort_key = snapshot_sort_key(token)
        with self._lock_for(sort_key):
            try:
                self._store.delete_item(
                    partition_key=SNAPSHOT_PARTITION, sort_key=sort_key
                )
            except Exception:
                logger.exception(
                    "Failed to invalidate snapshot for %s", token_fingerprint(token)
                )
                return
        self._notify()

    def invalidate_all(self) -> int:
        """Drop every cached snapshot, across all credentials."""
        try:
            removed = self._store.delete_partition(
                partition_key=SNAPSHOT_PARTITION, sort_key_prefix=_TOKEN_PREFIX
            )
        except Exception:
            logger.exception("Failed to clear the snapshot cache")
            return 0
        logger.info("Cleared %d cached snapshot(s)", removed)
        self._notify()
        return removed

    # -- maintenance ---------------------------------------------------

    def sweep_expired(self) -> int:
        """Physically remove expired or unreadable snapshots; run once at startup."""
        try:
            entries = self._store.scan_partition(
                partition_key=SNAPSHOT_PARTITION, sort_key_prefix=_TOKEN_PREFIX
            )
        except Exception:
            logger.exception("Failed to scan the snapshot cache")
            return 0

        removed = 0
        for sort_key, raw in entries:
            snapshot = self._parse(raw) if raw is not None else None
            if snapshot is not None and not self._is_expired(snapshot):
                continue
            try:
                self._store.delete_item(
                    partition_key=SNAPSHOT_PARTITION, sort_key=sort_key
                )
            except Exception:
                logger.exception("Failed to remove expired snapshot %s", sort_key)
                continue
            removed += 1

        if removed:
            logger.info("Removed %d expired snapshot(s)", removed)
            self._notify()
        return removed

    def purge_legacy(self) -> int:
        """Delete records left behind by the old per-field cache layout."""
        removed = 0
        try:
            partition, sort_key = LEGACY_BALANCE_KEY
            if self._store.delete_item(partition_key=partition, sort_key=sort_key):
                removed += 1
            removed += self._store.delete_partition(
                partition_key=SNAPSHOT_PARTITION,
                sort_key_prefix=_LEGACY_CUSTOMER_PREFIX,
            )
        except Exception:
            logger.exception("Failed to purge legacy cache records")
        if removed:
            logger.info("Purged %d legacy cache record(s)", removed)
        return removed


__all__ = [
    "AccountCache",
    "DEFAULT_TTL",
    "LEGACY_BALANCE_KEY",
    "SNAPSHOT_PARTITION",
    "snapshot_sort_key",
]
