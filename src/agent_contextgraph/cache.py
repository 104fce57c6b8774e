"""
SQLite-backed embedding cache.

Entries are keyed by model + content hash and stored as packed float32
vectors with an expiry timestamp.
"""

import sqlite3
import struct
import time
from pathlib import Path
from typing import List, Optional

DEFAULT_TTL_SECONDS = 30 * 24 * 3600


def pack_vector(vector: List[float]) -> bytes:
    return struct.pack(f"{len(vector)}f", *vector)


def unpack_vector(blob: bytes) -> List[float]:
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


class EmbeddingCache:
    """
    Key/value store with per-entry expiry for embedding vectors.

    Writes are idempotent: two writers computing the same key store the
    same vector, and the last one wins.

    Usage:
        cache = EmbeddingCache("./embeddings_cache.db")
        cache.put("emb:model:abc", [0.1, 0.2])
        cache.get("emb:model:abc")
    """

    def __init__(self, db_path: str = ":memory:", ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.db_path = str(db_path)
        self.ttl_seconds = ttl_seconds
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_tables()

    def _init_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_expires
            ON embeddings(expires_at)
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[List[float]]:
        """Return the cached vector, or None when missing or expired."""
        row = self._conn.execute(
            "SELECT value, expires_at FROM embeddings WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at <= time.time():
            self.delete(key)
            return None
        return unpack_vector(value)

    def put(self, key: str, vector: List[float], ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._conn.execute(
            "INSERT OR REPLACE INTO embeddings (key, value, expires_at) VALUES (?, ?, ?)",
            (key, pack_vector(vector), time.time() + ttl),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM embeddings WHERE key = ?", (key,))
        self._conn.commit()

    def purge_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        cur = self._conn.execute("DELETE FROM embeddings WHERE expires_at <= ?", (time.time(),))
        self._conn.commit()
        return cur.rowcount

    def clear(self) -> int:
        cur = self._conn.execute("DELETE FROM embeddings")
        self._conn.commit()
        return cur.rowcount

    def stats(self) -> dict:
        row = self._conn.execute("""
            SELECT COUNT(*), SUM(LENGTH(value)), MIN(expires_at), MAX(expires_at)
            FROM embeddings
        """).fetchone()
        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_expiry": row[2] or 0,
            "newest_expiry": row[3] or 0,
        }

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
