"""
Memory Store — persistence and nearest-neighbour lookup for agent memories.

Two backends, one record:
- SQLite holds the record fields (summary, excerpts, tools, access counters)
- ChromaDB holds the embeddings in a cosine-space collection, tagged with the
  owning agent id so a query never crosses agents

``match`` asks Chroma for the ``top_k`` nearest vectors of that agent,
converts cosine distance back to similarity, drops everything under the
threshold and hydrates the survivors from SQLite in similarity order.
Records are never deleted here; retention is handled outside this service.

Both libraries are synchronous, so every public coroutine hands its work to
a worker thread and serializes on one lock.
"""

from __future__ import annotations

import asyncio
import json
import math
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import chromadb
import structlog

logger = structlog.get_logger(__name__)

COLLECTION_NAME = "agent_memories"


class MemoryStore(Protocol):
    async def insert(self, record: dict[str, Any]) -> str: ...

    async def match(
        self,
        agent_id: str,
        embedding: Sequence[float],
        top_k: int,
        threshold: float,
    ) -> list[dict[str, Any]]: ...

    async def touch(self, ids: Sequence[str]) -> None: ...


MEMORY_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_memories (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    session_id TEXT,
    summary TEXT NOT NULL,
    command_text TEXT,
    response_text TEXT,
    tool_names TEXT NOT NULL DEFAULT '[]',
    turn_count INTEGER NOT NULL DEFAULT 0,
    importance REAL NOT NULL DEFAULT 1.0,
    access_count INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    last_accessed_at REAL
);

CREATE INDEX IF NOT EXISTS idx_memories_agent ON agent_memories(agent_id);
CREATE INDEX IF NOT EXISTS idx_memories_created ON agent_memories(created_at);
"""


def distance_to_similarity(distance: Optional[float]) -> float:
    """Cosine distance from a ``hnsw:space=cosine`` collection back to cosine similarity."""
    if distance is None or math.isnan(distance):
        return 0.0
    return max(-1.0, min(1.0, 1.0 - float(distance)))


class SQLiteMemoryStore:
    def __init__(self, db_path: Path, vector_db_path: Optional[Path] = None):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._vector_db_path = Path(vector_db_path or self._db_path.parent / "memory_vectors")
        self._conn: Optional[sqlite3.Connection] = None
        self._vector_client: Any = None
        self._collection: Any = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        if self._conn is not None:
            return
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(MEMORY_SCHEMA)
        self._conn.commit()

        self._vector_db_path.mkdir(parents=True, exist_ok=True)
        self._vector_client = chromadb.PersistentClient(path=str(self._vector_db_path))
        self._collection = self._vector_client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info(
            "memory_store.initialized",
            path=str(self._db_path),
            vector_path=str(self._vector_db_path),
        )

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None or self._collection is None:
            raise RuntimeError("SQLiteMemoryStore is not initialized. Call initialize() first.")
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
        self._vector_client = None
        self._collection = None

    # ------------------------------------------------------------------
    # Async surface
    # ------------------------------------------------------------------

    async def insert(self, record: dict[str, Any]) -> str:
        return await asyncio.to_thread(self._insert, record)

    async def match(
        self,
        agent_id: str,
        embedding: Sequence[float],
        top_k: int,
        threshold: float,
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._match, agent_id, list(embedding), top_k, threshold)

    async def touch(self, ids: Sequence[str]) -> None:
        if ids:
            await asyncio.to_thread(self._touch, list(ids))

    def count(self, agent_id: Optional[str] = None) -> int:
        with self._lock:
            conn = self._require_connection()
            if agent_id is None:
                return conn.execute("SELECT COUNT(*) FROM agent_memories").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM agent_memories WHERE agent_id = ?", (agent_id,)
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Worker-thread bodies
    # ------------------------------------------------------------------

    def _insert(self, record: dict[str, Any]) -> str:
        memory_id = record.get("id") or str(uuid.uuid4())
        embedding = [float(x) for x in record["embedding"]]
        with self._lock:
            conn = self._require_connection()
            conn.execute(
                """INSERT INTO agent_memories
                   (id, agent_id, session_id, summary, command_text, response_text,
                    tool_names, turn_count, importance, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    memory_id,
                    record["agent_id"],
                    record.get("session_id"),
                    record["summary"],
                    record.get("command_text"),
                    record.get("response_text"),
                    json.dumps(list(record.get("tool_names") or [])),
                    int(record.get("turn_count") or 0),
                    float(record.get("importance", 1.0)),
                    float(record.get("created_at") or time.time()),
                ),
            )
            try:
                self._collection.upsert(
                    ids=[memory_id],
                    embeddings=[embedding],
                    metadatas=[{"agent_id": record["agent_id"]}],
                )
            except Exception:
                conn.rollback()
                raise
            conn.commit()
        return memory_id

    def _match(
        self,
        agent_id: str,
        embedding: list[float],
        top_k: int,
        threshold: float,
    ) -> list[dict[str, Any]]:
        with self._lock:
            conn = self._require_connection()
            if self._collection.count() == 0:
                return []
            result = self._collection.query(
                query_embeddings=[embedding],
                n_results=max(1, int(top_k)),
                where={"agent_id": agent_id},
                include=["distances"],
            )
            ids = (result.get("ids") or [[]])[0]
            distances = (result.get("distances") or [[]])[0]
            scored = [
                (memory_id, distance_to_similarity(distance))
                for memory_id, distance in zip(ids, distances)
            ]
            scored = [(m, s) for m, s in scored if s >= threshold]
            if not scored:
                return []

            placeholders = ", ".join("?" for _ in scored)
            rows = conn.execute(
                f"SELECT * FROM agent_memories WHERE agent_id = ? AND id IN ({placeholders})",
                (agent_id, *(m for m, _ in scored)),
            ).fetchall()

        by_id = {row["id"]: row for row in rows}
        matches: list[dict[str, Any]] = []
        for memory_id, similarity in sorted(scored, key=lambda x: x[1], reverse=True):
            row = by_id.get(memory_id)
            if row is None:
                # Vector without a record; the SQLite side is authoritative.
                continue
            matches.append({
                "id": row["id"],
                "agent_id": row["agent_id"],
                "session_id": row["session_id"],
                "summary": row["summary"],
                "command_text": row["command_text"],
                "response_text": row["response_text"],
                "tool_names": json.loads(row["tool_names"] or "[]"),
                "turn_count": row["turn_count"],
                "importance": row["importance"],
                "similarity": similarity,
                "created_at": row["created_at"],
                "last_accessed_at": row["last_accessed_at"],
                "access_count": row["access_count"],
            })
        return matches[:top_k]

    def _touch(self, ids: list[str]) -> None:
        now = time.time()
        with self._lock:
            conn = self._require_connection()
            conn.executemany(
                """UPDATE agent_memories
                   SET last_accessed_at = ?, access_count = access_count + 1
                   WHERE id = ?""",
                [(now, memory_id) for memory_id in ids],
            )
            conn.commit()
