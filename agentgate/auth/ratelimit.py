"""
Per-agent request rate limiting over a fixed window.

The counter lives in a store shared by every process that serves requests,
so N instances behind a load balancer enforce one limit rather than N. The
default store is a SQLite file on the host; each hit is one atomic upsert
inside an IMMEDIATE transaction, so concurrent writers serialize on the
database lock and never observe a torn count. The blocking SQLite work runs
in a worker thread so a busy lock never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import math
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

import structlog

from agentgate.types import RateLimitStatus

logger = structlog.get_logger(__name__)


class RateLimitStore(Protocol):
    async def hit(self, key: str, window_seconds: float, now: float) -> tuple[int, float]:
        """Increment *key* in the window containing *now*; return (count, window_start)."""
        ...


RATE_LIMIT_SCHEMA = """
CREATE TABLE IF NOT EXISTS rate_limit_windows (
    key TEXT NOT NULL,
    window_start REAL NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (key, window_start)
);
"""

_UPSERT = """
INSERT INTO rate_limit_windows (key, window_start, count) VALUES (?, ?, 1)
ON CONFLICT(key, window_start) DO UPDATE SET count = count + 1
RETURNING count
"""


class SQLiteRateLimitStore:
    """Fixed-window counters in a SQLite file shared across processes."""

    def __init__(self, db_path: Path, prune_every: int = 500, busy_timeout: float = 5.0):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._prune_every = max(1, prune_every)
        self._hits_since_prune = 0
        self._busy_timeout = busy_timeout
        self._lock = threading.Lock()

    def initialize(self) -> None:
        if self._conn is not None:
            return
        # Autocommit mode; transactions are opened explicitly per hit.
        self._conn = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,
            timeout=self._busy_timeout,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(RATE_LIMIT_SCHEMA)
        logger.info("rate_limit_store.initialized", path=str(self._db_path))

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SQLiteRateLimitStore is not initialized. Call initialize() first.")
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    async def hit(self, key: str, window_seconds: float, now: float) -> tuple[int, float]:
        return await asyncio.to_thread(self._hit, key, window_seconds, now)

    def _hit(self, key: str, window_seconds: float, now: float) -> tuple[int, float]:
        window_start = math.floor(now / window_seconds) * window_seconds
        with self._lock:
            conn = self._require_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                count = conn.execute(_UPSERT, (key, window_start)).fetchone()[0]
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

            self._hits_since_prune += 1
            if self._hits_since_prune >= self._prune_every:
                self._hits_since_prune = 0
                self._prune(conn, window_start - window_seconds)
        return int(count), window_start

    def _prune(self, conn: sqlite3.Connection, older_than: float) -> None:
        try:
            cursor = conn.execute(
                "DELETE FROM rate_limit_windows WHERE window_start < ?",
                (older_than,),
            )
            logger.debug("rate_limit_store.pruned", rows=cursor.rowcount)
        except sqlite3.OperationalError as e:
            # Another process holds the write lock; the next prune catches up.
            logger.debug("rate_limit_store.prune_skipped", error=str(e))


class RateLimiter:
    """Checks one agent's request against its requests-per-window limit."""

    def __init__(
        self,
        store: RateLimitStore,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._window = float(window_seconds)
        self._clock = clock

    @property
    def window_seconds(self) -> float:
        return self._window

    async def check(self, agent_id: str, limit: int) -> RateLimitStatus:
        now = self._clock()
        count, window_start = await self._store.hit(f"agent:{agent_id}", self._window, now)
        reset_at = window_start + self._window
        allowed = count <= limit
        status = RateLimitStatus(
            allowed=allowed,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            limit=limit,
            retry_after=None if allowed else max(1, math.ceil(reset_at - now)),
        )
        if not allowed:
            logger.warning(
                "rate_limiter.exceeded",
                agent_id=agent_id,
                count=count,
                limit=limit,
                retry_after=status.retry_after,
            )
        return status


def rate_limit_headers(status: RateLimitStatus) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(status.limit),
        "X-RateLimit-Remaining": str(status.remaining),
        "X-RateLimit-Reset": str(math.ceil(status.reset_at)),
    }
    if status.retry_after is not None:
        headers["Retry-After"] = str(status.retry_after)
    return headers
