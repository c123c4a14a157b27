"""
Core data types shared across AgentGate subsystems.

This module defines lightweight data containers that cross subsystem boundaries.
They live here rather than in a specific subsystem to avoid circular imports.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

TIMEOUT_MESSAGE = "Execution timed out before completing the task."
MAX_TURNS_MESSAGE = "Reached maximum conversation turns without completing the task."
BLOCKED_MESSAGE = "Request blocked: potentially unsafe content detected in command."


class AgentType(str, Enum):
    AUTONOMOUS = "autonomous"
    SUPERVISED = "supervised"
    TOOL = "tool"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class LoopState(str, Enum):
    """States of one command's model/tool exchange."""
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"
    TIMED_OUT = "timed_out"
    MAX_TURNS_REACHED = "max_turns_reached"
    BLOCKED = "blocked"


@dataclass
class Agent:
    """An automated caller as resolved from its credential.

    The credential hash never leaves the agent directory; this record is
    what the rest of the core sees.
    """

    id: str
    name: str
    type: AgentType = AgentType.AUTONOMOUS
    status: AgentStatus = AgentStatus.ACTIVE
    capabilities: tuple[str, ...] = ()
    rate_limit_rpm: int = 60
    allow_destructive: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    last_seen_at: Optional[float] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.type = AgentType(self.type)
        self.status = AgentStatus(self.status)
        # Unique, order-preserving
        self.capabilities = tuple(dict.fromkeys(str(c) for c in self.capabilities))
        self.rate_limit_rpm = max(1, int(self.rate_limit_rpm))

    @property
    def is_active(self) -> bool:
        return self.status is AgentStatus.ACTIVE

    def destructive_metadata(self) -> dict[str, Any]:
        """Metadata handed to the destructive-action gate."""
        return {**self.metadata, "allow_destructive": self.allow_destructive is True}


@dataclass
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_at: float                 # epoch seconds
    limit: int
    retry_after: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "resetAt": int(self.reset_at * 1000),
            "limit": self.limit,
        }


@dataclass
class AuthResult:
    agent: Agent
    rate_limit: RateLimitStatus


@dataclass
class CommandRequest:
    """A validated inbound command body."""
    command: str
    session_id: Optional[str] = None


@dataclass
class CommandResult:
    """What the caller of the execution entry point gets back."""

    response: str
    tool_call_count: int
    turns_taken: int
    state: LoopState
    correlation_id: str
    tool_names: list[str] = field(default_factory=list)
    session_id: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "completed" if self.state is LoopState.DONE else self.state.value,
            "response": self.response,
            "tool_calls": self.tool_call_count,
            "turns": self.turns_taken,
            "state": self.state.value,
            "session_id": self.session_id,
            "duration_ms": self.duration_ms,
            "correlationId": self.correlation_id,
        }
