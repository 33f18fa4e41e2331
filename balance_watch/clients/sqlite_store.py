"""SQLite-backed key-value store used as the durable backing for cached snapshots."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


class SQLiteStore:
    """Key-value store using a normalized table keyed by (pk, sk).

    Writes are last-write-wins per key; there are no cross-key transactions.
    Rows whose payload is not valid JSON are surfaced by ``scan_partition`` as
    ``None`` so callers can decide to purge them.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self._db_path, check_same_thread=False)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    @property
    def path(self) -> Path:
        return self._db_path

    def put_item(self, item: Dict[str, Any]) -> None:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")

        data_json = json.dumps(item)
        updated_at = datetime.now(timezone.utc).isoformat()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO kv_records (pk, sk, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (pk, sk, data_json, updated_at),
            )

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, *, partition_key: str, sort_key: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            )
        return cursor.rowcount > 0

    def scan_partition(
        self, *, partition_key: str, sort_key_prefix: str = ""
    ) -> list[tuple[str, Optional[Dict[str, Any]]]]:
        """Return ``(sort_key, record)`` pairs; corrupt payloads yield ``None``."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT sk, data FROM kv_records "
                "WHERE pk = ? AND substr(sk, 1, ?) = ? ORDER BY sk",
                (partition_key, len(sort_key_prefix), sort_key_prefix),
            ).fetchall()

        results: list[tuple[str, Optional[Dict[str, Any]]]] = []
        for row in rows:
            try:
                record = json.loads(row["data"])
            except ValueError:
                record = None
            results.append((row["sk"], record if isinstance(record, dict) else None))
        return results

    def delete_partition(
        self, *, partition_key: str, sort_key_prefix: str = ""
    ) -> int:
        """Delete every record in a partition whose sort key starts with the prefix."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM kv_records WHERE pk = ? AND substr(sk, 1, ?) = ?",
                (partition_key, len(sort_key_prefix), sort_key_prefix),
            )
        return cursor.rowcount


__all__ = ["SQLiteStore"]
