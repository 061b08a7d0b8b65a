from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from arbmatch.match.scoring import cosine_similarity

logger = logging.getLogger(__name__)

INDEXING_FLAG = "__indexing__"

_PROCESS_LOCKS: Dict[str, threading.Lock] = {}
_PROCESS_LOCKS_GUARD = threading.Lock()


class IndexBusyError(RuntimeError):
    pass


def init_db(path: str) -> None:
    conn = sqlite3.connect(path)
    try:
        # WAL lets a reader keep its snapshot while a rebuild writes.
        conn.execute("PRAGMA journal_mode=WAL")
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS vectors (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                item_id TEXT NOT NULL,
                vector_json TEXT NOT NULL,
                metadata_json TEXT NOT NULL,
                updated_ts TEXT,
                UNIQUE (namespace, item_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS index_meta (
                name TEXT PRIMARY KEY,
                item_count INTEGER,
                updated_ts TEXT,
                indexing INTEGER NOT NULL DEFAULT 0,
                started_at REAL
            )
            """
        )
        conn.commit()
    finally:
        conn.close()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_UPSERT_VECTOR_SQL = """
INSERT INTO vectors (namespace, item_id, vector_json, metadata_json, updated_ts)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(namespace, item_id) DO UPDATE SET
    vector_json=excluded.vector_json,
    metadata_json=excluded.metadata_json,
    updated_ts=excluded.updated_ts
"""

_UPSERT_META_SQL = """
INSERT INTO index_meta (name, item_count, updated_ts)
VALUES (?, ?, ?)
ON CONFLICT(name) DO UPDATE SET
    item_count=excluded.item_count,
    updated_ts=excluded.updated_ts
"""


def _vector_rows(namespace: str, items: Sequence[Dict[str, Any]], now: str) -> List[tuple]:
    return [
        (
            namespace,
            str(item["id"]),
            json.dumps([float(v) for v in item["vector"]]),
            json.dumps(item.get("metadata") or {}),
            now,
        )
        for item in items
    ]


def _select_items(conn: sqlite3.Connection, namespace: str) -> List[Dict[str, Any]]:
    cur = conn.cursor()
    cur.execute(
        "SELECT item_id, vector_json, metadata_json FROM vectors WHERE namespace=? ORDER BY seq",
        (namespace,),
    )
    return [
        {"id": item_id, "vector": json.loads(vector_json), "metadata": json.loads(metadata_json)}
        for item_id, vector_json, metadata_json in cur.fetchall()
    ]


class VectorIndex:
    """Vectors with JSON metadata for one namespace (one venue) of the index."""

    def __init__(self, db_path: str, namespace: str) -> None:
        self.db_path = db_path
        self.namespace = namespace
        init_db(db_path)

    def upsert(self, items: Sequence[Dict[str, Any]]) -> int:
        """Insert or replace ``{"id", "vector", "metadata"}`` items.

        A replaced item keeps its original position in ``list_all``.
        """
        if not items:
            return 0
        rows = _vector_rows(self.namespace, items, _now_iso())
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executemany(_UPSERT_VECTOR_SQL, rows)
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def list_all(self) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        try:
            return _select_items(conn, self.namespace)
        finally:
            conn.close()

    def query(self, vector: Sequence[float], k: int = 5) -> List[Dict[str, Any]]:
        """Top ``k`` items by cosine similarity; ties keep insertion order."""
        if k <= 0:
            return []
        scored = []
        for item in self.list_all():
            item["score"] = cosine_similarity(vector, item["vector"])
            scored.append(item)
        scored.sort(key=lambda item: item["score"], reverse=True)
        return scored[:k]

    def clear(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DELETE FROM vectors WHERE namespace=?", (self.namespace,))
            conn.commit()
        finally:
            conn.close()

    def count(self) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM vectors WHERE namespace=?", (self.namespace,))
            return int(cur.fetchone()[0])
        finally:
            conn.close()


def record_index_meta(db_path: str, namespace: str, item_count: int) -> None:
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(_UPSERT_META_SQL, (namespace, item_count, _now_iso()))
        conn.commit()
    finally:
        conn.close()


def replace_index(db_path: str, items_by_namespace: Dict[str, Sequence[Dict[str, Any]]]) -> Dict[str, int]:
    """Swap the contents of each namespace and its ``index_meta`` row.

    Everything happens in one transaction: readers see either the previous
    index or the new one, and an error rolls the whole swap back.
    """
    init_db(db_path)
    now = _now_iso()
    counts: Dict[str, int] = {}
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for namespace, items in items_by_namespace.items():
            cur.execute("DELETE FROM vectors WHERE namespace=?", (namespace,))
            cur.executemany(_UPSERT_VECTOR_SQL, _vector_rows(namespace, items, now))
            cur.execute("SELECT COUNT(*) FROM vectors WHERE namespace=?", (namespace,))
            counts[namespace] = int(cur.fetchone()[0])
            cur.execute(_UPSERT_META_SQL, (namespace, counts[namespace], now))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return counts


def read_index_snapshot(
    db_path: str, namespaces: Sequence[str], ttl_seconds: float = 3600.0
) -> Dict[str, List[Dict[str, Any]]]:
    """Read several namespaces from one consistent snapshot.

    The indexing flag is checked before and after the read, so a rebuild that
    starts mid-read raises ``IndexBusyError`` instead of returning vectors
    from two different rebuilds.
    """
    guard = IndexGuard(db_path, ttl_seconds)
    guard.ensure_available()
    conn = sqlite3.connect(db_path, isolation_level=None)
    try:
        conn.execute("BEGIN")
        snapshot = {namespace: _select_items(conn, namespace) for namespace in namespaces}
        conn.execute("COMMIT")
    finally:
        conn.close()
    guard.ensure_available()
    return snapshot


def get_index_stats(db_path: str, ttl_seconds: float = 3600.0) -> Dict[str, Any]:
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute("SELECT name, item_count, updated_ts FROM index_meta WHERE name != ? ORDER BY name", (INDEXING_FLAG,))
        meta_rows = cur.fetchall()
        cur.execute("SELECT namespace, COUNT(*) FROM vectors GROUP BY namespace")
        stored = dict(cur.fetchall())
    finally:
        conn.close()

    namespaces: Dict[str, Dict[str, Any]] = {}
    last_updated: Optional[str] = None
    for name, item_count, updated_ts in meta_rows:
        namespaces[name] = {
            "item_count": item_count,
            "stored": stored.get(name, 0),
            "updated_ts": updated_ts,
        }
        if updated_ts and (last_updated is None or updated_ts > last_updated):
            last_updated = updated_ts
    guard = IndexGuard(db_path, ttl_seconds)
    return {
        "namespaces": namespaces,
        "total_items": sum(stored.values()),
        "last_updated": last_updated,
        "indexing": guard.is_indexing(),
    }


def _process_lock(db_path: str) -> threading.Lock:
    with _PROCESS_LOCKS_GUARD:
        lock = _PROCESS_LOCKS.get(db_path)
        if lock is None:
            lock = threading.Lock()
            _PROCESS_LOCKS[db_path] = lock
        return lock


class IndexGuard:
    """Marks an index rebuild as in progress.

    The flag lives in ``index_meta`` so other processes reading the same
    database see it. A flag older than ``ttl_seconds`` is left over from a
    crashed rebuild and is ignored.
    """

    def __init__(self, db_path: str, ttl_seconds: float = 3600.0) -> None:
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self._lock = _process_lock(db_path)
        init_db(db_path)

    @contextmanager
    def indexing(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise IndexBusyError(f"Index rebuild already running for {self.db_path}")
        try:
            if self._persisted_flag_active():
                raise IndexBusyError(f"Index rebuild in progress in another process for {self.db_path}")
            self._set_flag(True)
            try:
                yield
            finally:
                self._set_flag(False)
        finally:
            self._lock.release()

    def is_indexing(self) -> bool:
        if self._lock.locked():
            return True
        return self._persisted_flag_active()

    def ensure_available(self) -> None:
        if self.is_indexing():
            raise IndexBusyError("Index is being rebuilt; try again once the refresh finishes")

    def _persisted_flag_active(self) -> bool:
        conn = sqlite3.connect(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute("SELECT indexing, started_at FROM index_meta WHERE name=?", (INDEXING_FLAG,))
            row = cur.fetchone()
        finally:
            conn.close()
        if not row or not row[0]:
            return False
        started_at = row[1] or 0.0
        if time.time() - started_at > self.ttl_seconds:
            logger.warning("Ignoring stale indexing flag db=%s started_at=%.0f", self.db_path, started_at)
            return False
        return True

    def _set_flag(self, active: bool) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO index_meta (name, indexing, started_at, updated_ts)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    indexing=excluded.indexing,
                    started_at=excluded.started_at,
                    updated_ts=excluded.updated_ts
                """,
                (INDEXING_FLAG, 1 if active else 0, time.time() if active else None, _now_iso()),
            )
            conn.commit()
        finally:
            conn.close()
