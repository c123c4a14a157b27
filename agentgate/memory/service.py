"""
Memory Service — what an agent remembers between commands.

After a command completes, the exchange is condensed into a bounded summary,
embedded, and stored. Before the next command runs, similar past exchanges
are retrieved and rendered into a short list that is prepended to the
command.

Memory is strictly best-effort. Neither ``store`` nor ``retrieve`` ever
raises: a missing embedding or a storage error degrades to "not stored" or
"no matches" and is logged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import structlog

from agentgate.memory.embeddings import EmbedFn
from agentgate.memory.store import MemoryStore

logger = structlog.get_logger(__name__)

MAX_SUMMARY_LENGTH = 2000
MAX_EXCERPT_LENGTH = 1000
DEFAULT_TOP_K = 5
DEFAULT_THRESHOLD = 0.7
PROMPT_HEADING = "RELEVANT PAST INTERACTIONS:"


@dataclass
class MemoryRecord:
    id: str
    agent_id: str
    summary: str
    created_at: float
    command_text: Optional[str] = None
    response_text: Optional[str] = None
    tool_names: list[str] = field(default_factory=list)
    turn_count: int = 0
    importance: float = 1.0
    similarity: float = 0.0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MemoryRecord":
        return cls(
            id=str(row["id"]),
            agent_id=str(row.get("agent_id", "")),
            summary=str(row.get("summary", "")),
            created_at=float(row.get("created_at") or 0.0),
            command_text=row.get("command_text"),
            response_text=row.get("response_text"),
            tool_names=list(row.get("tool_names") or []),
            turn_count=int(row.get("turn_count") or 0),
            importance=float(row.get("importance", 1.0)),
            similarity=float(row.get("similarity", 0.0)),
        )


def build_summary(command: str, response: str, max_length: int = MAX_SUMMARY_LENGTH) -> str:
    return f"Command: {command}\nResponse: {response}"[:max_length]


def format_memories_for_prompt(memories: Sequence[MemoryRecord]) -> str:
    """Render *memories* as a numbered list under a fixed heading, in input order."""
    if not memories:
        return ""
    lines = []
    for i, memory in enumerate(memories, start=1):
        date = datetime.fromtimestamp(memory.created_at, tz=timezone.utc).date().isoformat()
        tools = f" (tools: {', '.join(memory.tool_names)})" if memory.tool_names else ""
        lines.append(f"{i}. [{date}]{tools} {memory.summary}")
    return "\n".join(["", PROMPT_HEADING, *lines, ""])


class MemoryService:
    def __init__(
        self,
        embed_fn: EmbedFn,
        store: MemoryStore,
        *,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
        max_summary_length: int = MAX_SUMMARY_LENGTH,
        max_excerpt_length: int = MAX_EXCERPT_LENGTH,
    ):
        self._embed = embed_fn
        self._store = store
        self._top_k = top_k
        self._threshold = threshold
        self._max_summary = max_summary_length
        self._max_excerpt = max_excerpt_length
        self._background: set[asyncio.Task] = set()

    async def _embed_safely(self, text: str) -> Optional[list[float]]:
        try:
            return await self._embed(text)
        except Exception as e:
            logger.warning("memory_service.embed_failed", error=f"{type(e).__name__}: {e}")
            return None

    async def store(
        self,
        agent_id: str,
        command: str,
        response: str,
        tool_names: Sequence[str] = (),
        turn_count: int = 0,
        importance: float = 1.0,
        session_id: Optional[str] = None,
    ) -> bool:
        """Persist one exchange. Returns False instead of raising on any failure."""
        summary = build_summary(command, response, self._max_summary)
        embedding = await self._embed_safely(summary)
        if not embedding:
            logger.debug("memory_service.store_skipped", agent_id=agent_id, reason="no_embedding")
            return False

        try:
            memory_id = await self._store.insert({
                "agent_id": agent_id,
                "session_id": session_id,
                "summary": summary,
                "command_text": command[: self._max_excerpt],
                "response_text": response[: self._max_excerpt],
                "tool_names": list(tool_names),
                "turn_count": turn_count,
                "importance": importance,
                "embedding": embedding,
            })
        except Exception as e:
            logger.warning("memory_service.store_failed", agent_id=agent_id, error=str(e))
            return False

        logger.info("memory_service.stored", agent_id=agent_id, memory_id=memory_id)
        return True

    async def retrieve(self, agent_id: str, command: str) -> list[MemoryRecord]:
        """Past exchanges similar to *command*; empty on any failure."""
        embedding = await self._embed_safely(command)
        if not embedding:
            return []

        try:
            rows = await self._store.match(agent_id, embedding, self._top_k, self._threshold)
        except Exception as e:
            logger.warning("memory_service.retrieve_failed", agent_id=agent_id, error=str(e))
            return []

        memories = [MemoryRecord.from_row(row) for row in rows]
        if memories:
            self._schedule_touch([m.id for m in memories])
        logger.info("memory_service.retrieved", agent_id=agent_id, count=len(memories))
        return memories

    def format_for_prompt(self, memories: Sequence[MemoryRecord]) -> str:
        return format_memories_for_prompt(memories)

    def _schedule_touch(self, ids: list[str]) -> None:
        task = asyncio.create_task(self._touch(ids), name="memory-touch")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch(self, ids: list[str]) -> None:
        try:
            await self._store.touch(ids)
        except Exception as e:
            logger.debug("memory_service.touch_failed", count=len(ids), error=str(e))

    async def drain(self) -> None:
        """Wait for pending access-tracking updates."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
