# agentgate/config.py
"""
Configuration for the AgentGate execution core.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Each subsystem gets its
own settings class so it can be constructed in isolation (tests build them
directly with keyword arguments).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above agentgate/),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        return [part.strip() for part in stripped.split(",") if part.strip()]
    return []


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class ClaudeConfig(BaseSettings):
    """Connection settings for the model backend."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="AGENTGATE_MODEL")
    max_tokens: int = Field(4096, alias="AGENTGATE_MAX_TOKENS")
    request_timeout_seconds: float = Field(60.0, alias="AGENTGATE_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_runtime_limits(self) -> "ClaudeConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        return self


class AuthConfig(BaseSettings):
    """Agent credential checks and per-agent rate limiting."""

    header_name: str = Field("x-agent-key", alias="AGENTGATE_AUTH_HEADER")
    key_prefix: str = Field("agk_", alias="AGENTGATE_KEY_PREFIX")
    rate_limit_window_seconds: float = Field(60.0, alias="AGENTGATE_RATE_LIMIT_WINDOW")
    agents_db_path: Path = Field(Path("./agentgate_data/agents.db"), alias="AGENTGATE_AGENTS_DB")
    rate_limit_db_path: Path = Field(
        Path("./agentgate_data/ratelimit.db"), alias="AGENTGATE_RATE_LIMIT_DB"
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AuthConfig":
        self.header_name = self.header_name.strip().lower() or "x-agent-key"
        self.rate_limit_window_seconds = max(1.0, float(self.rate_limit_window_seconds))
        if not self.key_prefix:
            raise ValueError("AGENTGATE_KEY_PREFIX must not be empty.")
        return self


class LoopConfig(BaseSettings):
    """Bounds for one command's model/tool exchange."""

    max_turns: int = Field(5, alias="AGENTGATE_MAX_TURNS")
    execution_timeout_seconds: float = Field(24.0, alias="AGENTGATE_EXECUTION_TIMEOUT")
    system_prompt: Optional[str] = Field(None, alias="AGENTGATE_SYSTEM_PROMPT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "LoopConfig":
        self.max_turns = max(1, int(self.max_turns))
        self.execution_timeout_seconds = max(1.0, float(self.execution_timeout_seconds))
        return self


class SafetyConfig(BaseSettings):
    """Content filtering and destructive-action policy."""

    max_tool_output_length: int = Field(50_000, alias="AGENTGATE_MAX_TOOL_OUTPUT")
    redact_pii: bool = Field(True, alias="AGENTGATE_REDACT_PII")
    # Empty list means "use the built-in destructive action set"
    destructive_actions: StrList = Field(
        default_factory=list, alias="AGENTGATE_DESTRUCTIVE_ACTIONS"
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SafetyConfig":
        self.max_tool_output_length = max(1, int(self.max_tool_output_length))
        return self


class MemoryConfig(BaseSettings):
    """Semantic memory of past exchanges."""

    enabled: bool = Field(True, alias="AGENTGATE_MEMORY_ENABLED")
    db_path: Path = Field(Path("./agentgate_data/memory.db"), alias="AGENTGATE_MEMORY_DB")
    top_k: int = Field(5, alias="AGENTGATE_MEMORY_TOP_K")
    similarity_threshold: float = Field(0.7, alias="AGENTGATE_MEMORY_THRESHOLD")
    max_summary_length: int = Field(2000, alias="AGENTGATE_MEMORY_SUMMARY_MAX")
    max_excerpt_length: int = Field(1000, alias="AGENTGATE_MEMORY_EXCERPT_MAX")

    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    embedding_url: str = Field(
        "https://api.openai.com/v1/embeddings", alias="AGENTGATE_EMBEDDING_URL"
    )
    embedding_model: str = Field("text-embedding-3-small", alias="AGENTGATE_EMBEDDING_MODEL")
    embedding_timeout_seconds: float = Field(3.0, alias="AGENTGATE_EMBEDDING_TIMEOUT")
    embedding_input_limit: int = Field(8000, alias="AGENTGATE_EMBEDDING_INPUT_LIMIT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "MemoryConfig":
        self.top_k = max(1, int(self.top_k))
        self.similarity_threshold = max(0.0, min(1.0, float(self.similarity_threshold)))
        self.max_summary_length = max(1, int(self.max_summary_length))
        self.max_excerpt_length = max(1, int(self.max_excerpt_length))
        self.embedding_timeout_seconds = max(0.1, float(self.embedding_timeout_seconds))
        self.embedding_input_limit = max(1, int(self.embedding_input_limit))
        return self


class AuditConfig(BaseSettings):
    """Where audit events go."""

    db_path: Path = Field(Path("./agentgate_data/audit.db"), alias="AGENTGATE_AUDIT_DB")
    max_queue_size: int = Field(10_000, alias="AGENTGATE_AUDIT_QUEUE_SIZE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class ToolsConfig(BaseSettings):
    """Tool catalog source and execution delegate settings."""

    catalog_path: Optional[Path] = Field(None, alias="AGENTGATE_TOOLS_FILE")
    action_gateway_url: Optional[str] = Field(None, alias="AGENTGATE_ACTION_GATEWAY_URL")
    action_gateway_token: Optional[str] = Field(None, alias="AGENTGATE_ACTION_GATEWAY_TOKEN")
    default_timeout: float = Field(15.0, alias="AGENTGATE_TOOL_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ToolsConfig":
        self.default_timeout = max(0.1, float(self.default_timeout))
        return self


class GatewayConfig(BaseSettings):
    """HTTP gateway binding."""

    host: str = Field("127.0.0.1", alias="AGENTGATE_HOST")
    port: int = Field(8787, alias="AGENTGATE_PORT")
    max_body_bytes: int = Field(64 * 1024, alias="AGENTGATE_MAX_BODY_BYTES")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class AgentGateConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its config from here. Relative paths are
    resolved against the project root so the service behaves the same from
    any working directory.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.claude = ClaudeConfig()
        self.auth = AuthConfig()
        self.loop = LoopConfig()
        self.safety = SafetyConfig()
        self.memory = MemoryConfig()
        self.audit = AuditConfig()
        self.tools = ToolsConfig()
        self.gateway = GatewayConfig()

        if data_dir is not None:
            self.auth.agents_db_path = data_dir / "agents.db"
            self.auth.rate_limit_db_path = data_dir / "ratelimit.db"
            self.memory.db_path = data_dir / "memory.db"
            self.audit.db_path = data_dir / "audit.db"

        self._resolve_paths()

        for path in (
            self.auth.agents_db_path,
            self.auth.rate_limit_db_path,
            self.memory.db_path,
            self.audit.db_path,
        ):
            path.parent.mkdir(parents=True, exist_ok=True)

    def _resolve_paths(self) -> None:
        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.auth.agents_db_path = _resolve(self.auth.agents_db_path)
        self.auth.rate_limit_db_path = _resolve(self.auth.rate_limit_db_path)
        self.memory.db_path = _resolve(self.memory.db_path)
        self.audit.db_path = _resolve(self.audit.db_path)
        if self.tools.catalog_path is not None:
            self.tools.catalog_path = _resolve(self.tools.catalog_path)

    def __repr__(self) -> str:
        return (
            f"AgentGateConfig(model={self.claude.model}, "
            f"max_turns={self.loop.max_turns}, "
            f"timeout={self.loop.execution_timeout_seconds}s, "
            f"memory={'on' if self.memory.enabled else 'off'})"
        )
