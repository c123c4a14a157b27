"""Semantic memory of past agent exchanges."""

from agentgate.memory.embeddings import OpenAIEmbedder
from agentgate.memory.service import MemoryRecord, MemoryService, build_summary, format_memories_for_prompt
from agentgate.memory.store import SQLiteMemoryStore

__all__ = [
    "MemoryRecord",
    "MemoryService",
    "OpenAIEmbedder",
    "SQLiteMemoryStore",
    "build_summary",
    "format_memories_for_prompt",
]
