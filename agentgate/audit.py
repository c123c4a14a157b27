"""
Audit Sink — the append-only record of who did what.

Every security-relevant decision (authentication, rate limiting, capability
denials, destructive-action blocks, command execution) is emitted here.

Concurrency model:
  - emit() builds the event and enqueues it; it never blocks and never raises
  - A dispatcher task dequeues events in emission order and hands them to
    the writer
  - Writer exceptions are logged but do not propagate
  - A full queue drops the event with a warning

Audit writes are therefore at-most-once; a command's result never depends on
whether its audit row made it to disk.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


def new_correlation_id() -> str:
    return uuid.uuid4().hex


class AuditEvent(BaseModel):
    """One audit record."""

    actor_type: str
    actor_id: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


class AuditWriter(Protocol):
    async def write(self, event: AuditEvent) -> str: ...


AUDIT_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY,
    timestamp REAL NOT NULL,
    actor_type TEXT NOT NULL,
    actor_id TEXT,
    action TEXT NOT NULL,
    resource_type TEXT,
    resource_id TEXT,
    details TEXT DEFAULT '{}',
    correlation_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_log(actor_id);
CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_log(correlation_id);
"""


class SQLiteAuditWriter:
    """Append-only audit table in a SQLite file. Rows are never updated."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        if self._conn is not None:
            return
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(AUDIT_SCHEMA)
        self._conn.commit()
        logger.info("audit_writer.initialized", path=str(self._db_path))

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SQLiteAuditWriter is not initialized. Call initialize() first.")
        return self._conn

    async def write(self, event: AuditEvent) -> str:
        conn = self._require_connection()
        conn.execute(
            """INSERT INTO audit_log
               (event_id, timestamp, actor_type, actor_id, action,
                resource_type, resource_id, details, correlation_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.event_id,
                event.timestamp,
                event.actor_type,
                event.actor_id,
                event.action,
                event.resource_type,
                event.resource_id,
                json.dumps(event.details, default=str),
                event.correlation_id,
            ),
        )
        conn.commit()
        return event.event_id

    def query(
        self,
        *,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        conn = self._require_connection()
        clauses: list[str] = []
        params: list[Any] = []
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        if actor_id is not None:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        if correlation_id is not None:
            clauses.append("correlation_id = ?")
            params.append(correlation_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = conn.execute(
            f"SELECT * FROM audit_log {where} ORDER BY timestamp ASC, rowid ASC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [
            AuditEvent(
                event_id=row["event_id"],
                timestamp=row["timestamp"],
                actor_type=row["actor_type"],
                actor_id=row["actor_id"],
                action=row["action"],
                resource_type=row["resource_type"],
                resource_id=row["resource_id"],
                details=json.loads(row["details"] or "{}"),
                correlation_id=row["correlation_id"],
            )
            for row in rows
        ]

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


class LogAuditWriter:
    """Writes audit events to the structured log only."""

    async def write(self, event: AuditEvent) -> str:
        logger.info("audit.event", **event.model_dump())
        return event.event_id


_SENTINEL = object()


class AuditSink:
    """Queue-backed, fire-and-forget front end for an AuditWriter."""

    def __init__(self, writer: AuditWriter, max_queue_size: int = 10000) -> None:
        self._writer = writer
        self._queue: asyncio.Queue[AuditEvent | object] = asyncio.Queue(maxsize=max_queue_size)
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._running = False
        self._written = 0
        self._dropped = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(), name="audit-sink-dispatcher"
        )
        logger.info("audit_sink.started")

    async def stop(self) -> None:
        """Drain the queue and stop the dispatcher."""
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(_SENTINEL)
        except asyncio.QueueFull:
            logger.warning("audit_sink.stop_queue_full_cancelling_directly")
            if self._dispatcher_task is not None:
                self._dispatcher_task.cancel()
        if self._dispatcher_task is not None:
            try:
                await asyncio.wait_for(self._dispatcher_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("audit_sink.stop_timeout_cancelling", timeout=5.0)
                self._dispatcher_task.cancel()
                try:
                    await self._dispatcher_task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                pass
            self._dispatcher_task = None
        logger.info("audit_sink.stopped", written=self._written, dropped=self._dropped)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    def emit(
        self,
        action: str,
        *,
        actor_type: str = "agent",
        actor_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Record an audit event. Never blocks, never raises."""
        try:
            event = AuditEvent(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details or {},
                correlation_id=correlation_id,
            )
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("audit_sink.queue_full", action=action, dropped=True)
        except Exception:
            self._dropped += 1
            logger.error("audit_sink.emit_error", action=action, exc_info=True)

    async def flush(self) -> None:
        """Write everything queued so far. Intended for tests and shutdown."""
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _SENTINEL:
                # Put the stop signal back for the dispatcher.
                self._queue.put_nowait(item)
                break
            await self._write(item)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                break

            if item is _SENTINEL:
                break
            await self._write(item)  # type: ignore[arg-type]

        while not self._queue.empty():
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not _SENTINEL:
                await self._write(item)  # type: ignore[arg-type]

    async def _write(self, event: AuditEvent) -> None:
        try:
            await self._writer.write(event)
            self._written += 1
        except Exception:
            self._failed += 1
            logger.error(
                "audit_sink.write_error",
                action=event.action,
                event_id=event.event_id,
                exc_info=True,
            )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {
            "queued": self._queue.qsize(),
            "written": self._written,
            "dropped": self._dropped,
            "failed": self._failed,
        }
