"""
Shared fixtures for the AgentGate test suite.

Every SQLite-backed component is built on a fresh file under tmp_path, and
the audit sink is created unstarted so tests can ``flush()`` it and read the
rows back synchronously.
"""

from __future__ import annotations

import pytest

from agentgate.audit import AuditSink, SQLiteAuditWriter
from agentgate.auth.directory import SQLiteAgentDirectory
from agentgate.auth.ratelimit import SQLiteRateLimitStore
from agentgate.config import SafetyConfig
from agentgate.harness.safety import SafetyFilter
from agentgate.memory.store import SQLiteMemoryStore
from agentgate.tools.catalog import build_default_registry
from agentgate.tools.registry import ToolRegistry


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of config-driven tests."""
    for name in (
        "AGENTGATE_TOOLS_FILE",
        "AGENTGATE_ACTION_GATEWAY_URL",
        "AGENTGATE_KEY_PREFIX",
        "AGENTGATE_AUTH_HEADER",
        "AGENTGATE_DESTRUCTIVE_ACTIONS",
        "AGENTGATE_MAX_TURNS",
        "AGENTGATE_MEMORY_ENABLED",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def audit_writer(tmp_path):
    writer = SQLiteAuditWriter(tmp_path / "audit.db")
    writer.initialize()
    yield writer
    writer.close()


@pytest.fixture()
def audit(audit_writer) -> AuditSink:
    return AuditSink(audit_writer)


@pytest.fixture()
def directory(tmp_path):
    d = SQLiteAgentDirectory(tmp_path / "agents.db")
    d.initialize()
    yield d
    d.close()


@pytest.fixture()
def rate_store(tmp_path):
    store = SQLiteRateLimitStore(tmp_path / "ratelimit.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture()
def memory_store(tmp_path):
    store = SQLiteMemoryStore(tmp_path / "memory.db")
    store.initialize()
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Policy fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def safety_config() -> SafetyConfig:
    return SafetyConfig(max_tool_output_length=50_000, redact_pii=True)


@pytest.fixture()
def safety(safety_config) -> SafetyFilter:
    return SafetyFilter(safety_config)


@pytest.fixture()
def registry() -> ToolRegistry:
    return build_default_registry()
