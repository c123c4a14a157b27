"""
Agent Directory — who a credential belongs to.

Credentials are issued once and stored only as SHA-256 hashes. Verification
hashes the presented credential and looks it up through a unique index, so
one credential resolves to at most one agent and the raw value is never
persisted. Only active agents are returned by ``verify``; inactive and
suspended agents are indistinguishable from unknown credentials.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import structlog

from agentgate.types import Agent, AgentStatus, AgentType

logger = structlog.get_logger(__name__)


class AgentDirectory(Protocol):
    async def verify(self, raw_credential: str) -> list[Agent]: ...

    async def touch(self, agent_id: str) -> None: ...


def hash_credential(raw_credential: str) -> str:
    return hashlib.sha256(raw_credential.encode("utf-8")).hexdigest()


def generate_credential(prefix: str) -> str:
    return f"{prefix}{secrets.token_urlsafe(32)}"


AGENTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'autonomous',
    status TEXT NOT NULL DEFAULT 'active',
    capabilities TEXT NOT NULL DEFAULT '[]',
    rate_limit_rpm INTEGER NOT NULL DEFAULT 60,
    allow_destructive INTEGER NOT NULL DEFAULT 0,
    metadata TEXT NOT NULL DEFAULT '{}',
    credential_hash TEXT NOT NULL,
    credential_prefix TEXT NOT NULL DEFAULT '',
    last_seen_at REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_credential_hash ON agents(credential_hash);
CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(status);
"""


class SQLiteAgentDirectory:
    """Agent records and credential hashes in a SQLite file."""

    def __init__(self, db_path: Path, key_prefix: str = "agk_"):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._key_prefix = key_prefix
        self._conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        if self._conn is not None:
            return
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(AGENTS_SCHEMA)
        self._conn.commit()
        logger.info("agent_directory.initialized", path=str(self._db_path))

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SQLiteAgentDirectory is not initialized. Call initialize() first.")
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _row_to_agent(row: sqlite3.Row) -> Agent:
        return Agent(
            id=row["id"],
            name=row["name"],
            type=AgentType(row["type"]),
            status=AgentStatus(row["status"]),
            capabilities=tuple(json.loads(row["capabilities"] or "[]")),
            rate_limit_rpm=row["rate_limit_rpm"],
            allow_destructive=bool(row["allow_destructive"]),
            metadata=json.loads(row["metadata"] or "{}"),
            last_seen_at=row["last_seen_at"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_agent(
        self,
        name: str,
        *,
        agent_type: AgentType | str = AgentType.AUTONOMOUS,
        capabilities: Iterable[str] = (),
        rate_limit_rpm: int = 60,
        allow_destructive: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[Agent, str]:
        """Create an agent and return it with its raw credential.

        The raw credential is returned exactly once; only its hash is stored.
        """
        conn = self._require_connection()
        now = time.time()
        agent = Agent(
            id=str(uuid.uuid4()),
            name=name,
            type=AgentType(agent_type),
            status=AgentStatus.ACTIVE,
            capabilities=tuple(capabilities),
            rate_limit_rpm=rate_limit_rpm,
            allow_destructive=allow_destructive,
            metadata=dict(metadata or {}),
            created_at=now,
        )
        raw = generate_credential(self._key_prefix)
        conn.execute(
            """INSERT INTO agents
               (id, name, type, status, capabilities, rate_limit_rpm,
                allow_destructive, metadata, credential_hash, credential_prefix,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                agent.id,
                agent.name,
                agent.type.value,
                agent.status.value,
                json.dumps(list(agent.capabilities)),
                agent.rate_limit_rpm,
                int(agent.allow_destructive),
                json.dumps(agent.metadata, default=str),
                hash_credential(raw),
                raw[: len(self._key_prefix) + 4],
                now,
                now,
            ),
        )
        conn.commit()
        logger.info(
            "agent_directory.agent_created",
            agent_id=agent.id,
            name=name,
            type=agent.type.value,
            capabilities=list(agent.capabilities),
        )
        return agent, raw

    def rotate_credential(self, agent_id: str) -> str:
        """Issue a new credential for *agent_id*; the old one stops working."""
        conn = self._require_connection()
        raw = generate_credential(self._key_prefix)
        cursor = conn.execute(
            """UPDATE agents SET credential_hash = ?, credential_prefix = ?, updated_at = ?
               WHERE id = ?""",
            (hash_credential(raw), raw[: len(self._key_prefix) + 4], time.time(), agent_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"Unknown agent: {agent_id}")
        logger.info("agent_directory.credential_rotated", agent_id=agent_id)
        return raw

    def set_status(self, agent_id: str, status: AgentStatus | str) -> bool:
        conn = self._require_connection()
        status = AgentStatus(status)
        cursor = conn.execute(
            "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, time.time(), agent_id),
        )
        conn.commit()
        changed = cursor.rowcount > 0
        if changed:
            logger.info("agent_directory.status_changed", agent_id=agent_id, status=status.value)
        return changed

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        conn = self._require_connection()
        row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return self._row_to_agent(row) if row else None

    def list_agents(self, status: Optional[AgentStatus | str] = None) -> list[Agent]:
        conn = self._require_connection()
        if status is None:
            rows = conn.execute("SELECT * FROM agents ORDER BY created_at ASC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM agents WHERE status = ? ORDER BY created_at ASC",
                (AgentStatus(status).value,),
            ).fetchall()
        return [self._row_to_agent(r) for r in rows]

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(self, raw_credential: str) -> list[Agent]:
        """Resolve an active agent from a raw credential. Zero or one result."""
        conn = self._require_connection()
        digest = hash_credential(raw_credential)
        row = conn.execute(
            "SELECT * FROM agents WHERE credential_hash = ?",
            (digest,),
        ).fetchone()
        if row is None or not hmac.compare_digest(row["credential_hash"], digest):
            return []
        if row["status"] != AgentStatus.ACTIVE.value:
            return []
        return [self._row_to_agent(row)]

    async def touch(self, agent_id: str) -> None:
        conn = self._require_connection()
        conn.execute(
            "UPDATE agents SET last_seen_at = ? WHERE id = ?",
            (time.time(), agent_id),
        )
        conn.commit()
