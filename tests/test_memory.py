"""Tests for agentgate.memory — store, embedder and service."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from agentgate.config import MemoryConfig
from agentgate.memory.embeddings import OpenAIEmbedder
from agentgate.memory.service import (
    PROMPT_HEADING,
    MemoryRecord,
    MemoryService,
    build_summary,
    format_memories_for_prompt,
)
from agentgate.memory.store import SQLiteMemoryStore, distance_to_similarity


def _fixed_embed(vector):
    async def embed(text: str):
        return list(vector)

    return embed


async def _no_embedding(text: str):
    return None


async def _broken_embedding(text: str):
    raise ConnectionError("embedding service down")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class TestDistanceToSimilarity:
    def test_cosine_distance_round_trip(self) -> None:
        assert distance_to_similarity(0.0) == 1.0
        assert distance_to_similarity(0.25) == pytest.approx(0.75)
        assert distance_to_similarity(2.0) == -1.0

    def test_missing_distance(self) -> None:
        assert distance_to_similarity(None) == 0.0
        assert distance_to_similarity(float("nan")) == 0.0


class TestSQLiteMemoryStore:
    @pytest.mark.asyncio
    async def test_match_orders_and_thresholds(self, memory_store) -> None:
        for summary, vec in [("close", [1.0, 0.1]), ("exact", [1.0, 0.0]), ("far", [0.0, 1.0])]:
            await memory_store.insert({"agent_id": "a1", "summary": summary, "embedding": vec})
        rows = await memory_store.match("a1", [1.0, 0.0], top_k=5, threshold=0.7)
        assert [r["summary"] for r in rows] == ["exact", "close"]
        assert rows[0]["similarity"] >= rows[1]["similarity"]

    @pytest.mark.asyncio
    async def test_match_scoped_to_agent(self, memory_store) -> None:
        await memory_store.insert({"agent_id": "a1", "summary": "mine", "embedding": [1.0, 0.0]})
        await memory_store.insert({"agent_id": "a2", "summary": "theirs", "embedding": [1.0, 0.0]})
        rows = await memory_store.match("a1", [1.0, 0.0], top_k=5, threshold=0.0)
        assert [r["summary"] for r in rows] == ["mine"]

    @pytest.mark.asyncio
    async def test_top_k(self, memory_store) -> None:
        for i in range(4):
            await memory_store.insert({"agent_id": "a1", "summary": str(i), "embedding": [1.0, 0.0]})
        assert len(await memory_store.match("a1", [1.0, 0.0], top_k=2, threshold=0.5)) == 2

    @pytest.mark.asyncio
    async def test_touch_counts_access(self, memory_store) -> None:
        memory_id = await memory_store.insert({"agent_id": "a1", "summary": "s", "embedding": [1.0, 0.0]})
        await memory_store.touch([memory_id])
        await memory_store.touch([memory_id])
        row = (await memory_store.match("a1", [1.0, 0.0], 1, 0.0))[0]
        assert row["access_count"] == 2
        assert row["last_accessed_at"] is not None
        assert memory_store.count("a1") == 1
        assert memory_store.count() == 1

    @pytest.mark.asyncio
    async def test_empty_store_matches_nothing(self, memory_store) -> None:
        assert await memory_store.match("a1", [1.0, 0.0], top_k=5, threshold=0.0) == []

    @pytest.mark.asyncio
    async def test_vectors_survive_reopen(self, tmp_path) -> None:
        store = SQLiteMemoryStore(tmp_path / "m.db")
        store.initialize()
        memory_id = await store.insert({"agent_id": "a1", "summary": "kept", "embedding": [0.6, 0.8]})
        store.close()

        reopened = SQLiteMemoryStore(tmp_path / "m.db")
        reopened.initialize()
        rows = await reopened.match("a1", [0.6, 0.8], top_k=1, threshold=0.9)
        reopened.close()
        assert [r["id"] for r in rows] == [memory_id]
        assert rows[0]["similarity"] == pytest.approx(1.0, abs=1e-4)

    def test_requires_initialize(self, tmp_path) -> None:
        with pytest.raises(RuntimeError):
            SQLiteMemoryStore(tmp_path / "m.db").count()


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------

class TestOpenAIEmbedder:
    @pytest.mark.asyncio
    async def test_no_key_returns_none(self) -> None:
        embedder = OpenAIEmbedder(MemoryConfig(openai_api_key=None))
        assert not embedder.available
        assert await embedder("hello") is None
        await embedder.aclose()

    @pytest.mark.asyncio
    async def test_success_and_input_limit(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        embedder = OpenAIEmbedder(
            MemoryConfig(openai_api_key="sk-test", embedding_input_limit=5), client=client
        )
        assert await embedder.embed("abcdefghij") == [0.1, 0.2]
        assert seen[0]["input"] == "abcde"
        assert seen[0]["model"] == "text-embedding-3-small"
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, json={"error": "x"}),
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"data": [{"embedding": ["a", "b"]}]}),
        httpx.Response(200, text="not json"),
    ])
    async def test_failures_return_none(self, response) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: response))
        embedder = OpenAIEmbedder(MemoryConfig(openai_api_key="sk-test"), client=client)
        assert await embedder.embed("hello") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self) -> None:
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        embedder = OpenAIEmbedder(MemoryConfig(openai_api_key="sk-test"), client=client)
        assert await embedder.embed("hello") is None
        await client.aclose()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class TestFormatting:
    def test_empty_is_empty_string(self) -> None:
        assert format_memories_for_prompt([]) == ""

    def test_numbered_in_order_with_tools(self) -> None:
        ts = datetime(2026, 3, 4, 23, 30, tzinfo=timezone.utc).timestamp()
        memories = [
            MemoryRecord(id="1", agent_id="a", summary="first", created_at=ts, tool_names=["list_tasks"]),
            MemoryRecord(id="2", agent_id="a", summary="second", created_at=ts),
        ]
        assert format_memories_for_prompt(memories) == "\n".join([
            "",
            PROMPT_HEADING,
            "1. [2026-03-04] (tools: list_tasks) first",
            "2. [2026-03-04] second",
            "",
        ])

    def test_summary_bounded(self) -> None:
        summary = build_summary("c" * 50, "r" * 50, max_length=20)
        assert summary == "Command: " + "c" * 11
        assert len(summary) == 20


class TestMemoryService:
    @pytest.mark.asyncio
    async def test_store_then_retrieve(self, memory_store) -> None:
        service = MemoryService(_fixed_embed([1.0, 0.0]), memory_store)
        stored = await service.store("a1", "list tasks", "You have 2 tasks", tool_names=["list_tasks"], turn_count=2)
        assert stored
        memories = await service.retrieve("a1", "what tasks do I have")
        await service.drain()
        assert len(memories) == 1
        assert memories[0].summary == "Command: list tasks\nResponse: You have 2 tasks"
        assert memories[0].tool_names == ["list_tasks"]
        assert memories[0].turn_count == 2
        assert (await memory_store.match("a1", [1.0, 0.0], 1, 0.0))[0]["access_count"] == 1

    @pytest.mark.asyncio
    async def test_excerpts_truncated(self, memory_store) -> None:
        service = MemoryService(_fixed_embed([1.0, 0.0]), memory_store, max_excerpt_length=4)
        await service.store("a1", "abcdefgh", "12345678")
        row = (await memory_store.match("a1", [1.0, 0.0], 1, 0.0))[0]
        assert row["command_text"] == "abcd"
        assert row["response_text"] == "1234"

    @pytest.mark.asyncio
    async def test_no_embedding_degrades(self, memory_store) -> None:
        service = MemoryService(_no_embedding, memory_store)
        assert await service.store("a1", "c", "r") is False
        assert await service.retrieve("a1", "c") == []
        assert memory_store.count() == 0

    @pytest.mark.asyncio
    async def test_embedding_exception_degrades(self, memory_store) -> None:
        service = MemoryService(_broken_embedding, memory_store)
        assert await service.store("a1", "c", "r") is False
        assert await service.retrieve("a1", "c") == []

    @pytest.mark.asyncio
    async def test_store_failure_degrades(self) -> None:
        class BrokenStore:
            async def insert(self, record):
                raise RuntimeError("disk full")

            async def match(self, *args):
                raise RuntimeError("disk full")

            async def touch(self, ids):
                pass

        service = MemoryService(_fixed_embed([1.0, 0.0]), BrokenStore())
        assert await service.store("a1", "c", "r") is False
        assert await service.retrieve("a1", "c") == []

    @pytest.mark.asyncio
    async def test_threshold_filters(self, memory_store) -> None:
        await memory_store.insert({"agent_id": "a1", "summary": "far", "embedding": [0.0, 1.0]})
        service = MemoryService(_fixed_embed([1.0, 0.0]), memory_store, threshold=0.7)
        assert await service.retrieve("a1", "anything") == []

    @pytest.mark.asyncio
    async def test_touch_failure_does_not_affect_retrieve(self, memory_store) -> None:
        class TouchFailsStore:
            def __init__(self, inner):
                self.inner = inner
                self.touch_calls = 0

            async def insert(self, record):
                return await self.inner.insert(record)

            async def match(self, *args):
                return await self.inner.match(*args)

            async def touch(self, ids):
                self.touch_calls += 1
                raise RuntimeError("database is locked")

        store = TouchFailsStore(memory_store)
        service = MemoryService(_fixed_embed([1.0, 0.0]), store)
        assert await service.store("a1", "list tasks", "two tasks")
        memories = await service.retrieve("a1", "tasks?")
        await service.drain()
        assert [m.summary for m in memories] == ["Command: list tasks\nResponse: two tasks"]
        assert store.touch_calls == 1
        assert (await memory_store.match("a1", [1.0, 0.0], 1, 0.0))[0]["access_count"] == 0
