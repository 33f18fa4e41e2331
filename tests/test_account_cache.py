try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import sqlite3
from datetime import timedelta

from balance_watch.clients import SQLiteStore
from balance_watch.schemas import AccountSnapshot
from balance_watch.services import AccountCache
from balance_watch.services.account_cache import (
    LEGACY_BALANCE_KEY,
    SNAPSHOT_PARTITION,
    snapshot_sort_key,
)


def _snapshot(clock, **overrides) -> AccountSnapshot:
    fields = {
        "identity": "acc_1",
        "email": "user@example.com",
        "plan_name": "Developer",
        "expiry_date": None,
        "balance": "42.00",
        "captured_at": clock(),
    }
    fields.update(overrides)
    return AccountSnapshot(**fields)


class BrokenStore:
    def get_item(self, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    def put_item(self, item):
        raise sqlite3.OperationalError("database is locked")

    def delete_item(self, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    def scan_partition(self, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    def delete_partition(self, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")


def test_read_returns_written_snapshot(cache, clock) -> None:
    snapshot = _snapshot(clock)
    cache.write("token-a", snapshot)

    cached = cache.read("token-a")

    assert cached == snapshot
    assert cache.read("token-b") is None


def test_read_returns_independent_copies(cache, clock) -> None:
    cache.write("token-a", _snapshot(clock))

    first = cache.read("token-a")
    first.balance = "0"

    assert cache.read("token-a").balance == "42.00"


def test_credentials_are_matched_exactly(cache, clock) -> None:
    cache.write("token-a", _snapshot(clock))

    assert cache.read(" token-a") is None
    assert cache.read("TOKEN-A") is None


def test_read_treats_expired_snapshot_as_absent_without_purging(
    cache, clock, store
) -> None:
    cache.write("token-a", _snapshot(clock))

    clock.advance(hours=24, seconds=1)

    assert cache.read("token-a") is None
    assert store.get_item(
        partition_key=SNAPSHOT_PARTITION, sort_key=snapshot_sort_key("token-a")
    ) is not None


def test_snapshot_at_exact_ttl_is_still_fresh(cache, clock) -> None:
    cache.write("token-a", _snapshot(clock))

    clock.advance(hours=24)

    assert cache.read("token-a") is not None


def test_invalidate_removes_only_that_credential(cache, clock) -> None:
    cache.write("token-a", _snapshot(clock))
    cache.write("token-b", _snapshot(clock, identity="acc_2"))

    cache.invalidate("token-a")

    assert cache.read("token-a") is None
    assert cache.read("token-b").identity == "acc_2"


def test_invalidate_all_clears_every_credential(cache, clock) -> None:
    for index in range(3):
        cache.write(f"token-{index}", _snapshot(clock, identity=f"acc_{index}"))

    removed = cache.invalidate_all()

    assert removed == 3
    assert all(cache.read(f"token-{index}") is None for index in range(3))


def test_captured_at_strictly_increases(cache, clock) -> None:
    first = cache.write("token-a", _snapshot(clock))
    second = cache.write("token-a", _snapshot(clock, balance="41.00"))
    third = cache.write(
        "token-a", _snapshot(clock, captured_at=clock() - timedelta(minutes=5))
    )

    assert first.captured_at < second.captured_at < third.captured_at
    assert cache.read("token-a").captured_at == third.captured_at


def test_sweep_removes_old_entries_and_keeps_recent_ones(store, clock) -> None:
    cache = AccountCache(store, clock=clock)
    cache.write("stale", _snapshot(clock, captured_at=clock() - timedelta(hours=30)))
    cache.write("recent", _snapshot(clock, captured_at=clock() - timedelta(hours=2)))

    removed = cache.sweep_expired()

    assert removed == 1
    assert store.get_item(
        partition_key=SNAPSHOT_PARTITION, sort_key=snapshot_sort_key("stale")
    ) is None
    assert cache.read("recent") is not None


def test_sweep_removes_unreadable_records(store, cache) -> None:
    store.put_item(
        {"pk": SNAPSHOT_PARTITION, "sk": snapshot_sort_key("odd"), "snapshot": "oops"}
    )

    assert cache.sweep_expired() == 1
    assert cache.read("odd") is None


def test_legacy_records_are_ignored_and_purged(store, cache, clock) -> None:
    partition, sort_key = LEGACY_BALANCE_KEY
    store.put_item(
        {"pk": partition, "sk": sort_key, "balance": "99", "timestamp": 1700000000000}
    )
    store.put_item(
        {
            "pk": SNAPSHOT_PARTITION,
            "sk": "customer#token-a",
            "customerId": "acc_legacy",
            "timestamp": 1700000000000,
        }
    )
    # Bare balance stored under the current key layout.
    store.put_item(
        {
            "pk": SNAPSHOT_PARTITION,
            "sk": snapshot_sort_key("token-a"),
            "balance": "99",
            "timestamp": 1700000000000,
        }
    )

    assert cache.read("token-a") is None
    assert cache.purge_legacy() == 2
    assert store.get_item(partition_key=partition, sort_key=sort_key) is None


def test_is_account_info_valid(cache, clock) -> None:
    assert cache.is_account_info_valid("token-a") is False

    cache.write("token-a", _snapshot(clock))
    assert cache.is_account_info_valid("token-a") is True

    cache.write("token-a", AccountSnapshot.failure("boom", captured_at=clock()))
    assert cache.is_account_info_valid("token-a") is False


def test_subscribers_are_notified_on_every_change(cache, clock) -> None:
    events: list[str] = []
    unsubscribe = cache.subscribe(lambda: events.append("changed"))

    cache.write("token-a", _snapshot(clock))
    cache.invalidate("token-a")
    cache.invalidate_all()
    assert events == ["changed", "changed", "changed"]

    unsubscribe()
    cache.write("token-a", _snapshot(clock))
    assert len(events) == 3


def test_failing_subscriber_does_not_break_writes(cache, clock) -> None:
    def explode() -> None:
        raise RuntimeError("listener bug")

    cache.subscribe(explode)

    cache.write("token-a", _snapshot(clock))

    assert cache.read("token-a") is not None


def test_storage_errors_are_absorbed(clock) -> None:
    cache = AccountCache(BrokenStore(), clock=clock)
    events: list[str] = []
    cache.subscribe(lambda: events.append("changed"))

    assert cache.read("token-a") is None
    stored = cache.write("token-a", _snapshot(clock))
    cache.invalidate("token-a")

    assert stored.identity == "acc_1"
    assert cache.invalidate_all() == 0
    assert cache.sweep_expired() == 0
    assert cache.purge_legacy() == 0
    assert events == []


def test_snapshots_survive_a_new_cache_instance(tmp_path, clock) -> None:
    db_path = str(tmp_path / "persist.db")
    AccountCache(SQLiteStore(db_path), clock=clock).write("token-a", _snapshot(clock))

    reopened = AccountCache(SQLiteStore(db_path), clock=clock)

    assert reopened.read("token-a").balance == "42.00"


def test_token_is_not_written_to_disk(tmp_path, clock) -> None:
    db_path = tmp_path / "secret.db"
    AccountCache(SQLiteStore(str(db_path)), clock=clock).write(
        "super-secret-token", _snapshot(clock)
    )

    assert b"super-secret-token" not in db_path.read_bytes()


def test_captured_at_keeps_increasing_across_invalidation(cache, clock) -> None:
    first = cache.write("token-a", _snapshot(clock))
    second = cache.write("token-a", _snapshot(clock, balance="41.00"))

    cache.invalidate("token-a")
    failure = cache.write(
        "token-a", AccountSnapshot.failure("offline", captured_at=clock())
    )

    assert first.captured_at < second.captured_at < failure.captured_at
    assert cache.read("token-a").captured_at == failure.captured_at
