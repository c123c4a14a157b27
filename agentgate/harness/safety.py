"""
Safety Filter — content policy for everything that crosses the model boundary.

This module implements the guardrails the conversation loop applies at
three points:

1. INBOUND: the caller's command is scanned for prompt-injection phrasing
   before it can reach the model. Block-severity matches stop the command;
   warn-severity matches are recorded and the command proceeds.
2. TOOL OUTPUT: every tool result is PII-redacted, scrubbed of
   infrastructure details (private addresses, env assignments, connection
   strings), length-capped and wrapped in explicit boundary markers so the
   model can tell tool data from instructions.
3. OUTBOUND: the final text is PII-redacted and scanned for phrasing that
   suggests the system prompt is leaking.

Destructive actions (messages, payments, deployments, exports...) are gated
separately: tool-type agents can never perform them, other agents need an
explicit allow_destructive flag.

Every scan is pure and sub-millisecond; none of them calls out of process.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import structlog

from agentgate.config import SafetyConfig
from agentgate.privacy.redaction import redact_pii

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    WARN = "warn"
    BLOCK = "block"


@dataclass
class Violation:
    """One policy hit found while filtering content."""
    type: str
    severity: Severity
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "severity": self.severity.value, "detail": self.detail}


@dataclass
class FilterResult:
    """Filtered text plus every violation found on the way."""
    filtered: str
    violations: list[Violation] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def blocking(self) -> list[Violation]:
        return [v for v in self.violations if v.severity is Severity.BLOCK]


@dataclass
class DestructiveCheck:
    allowed: bool
    reason: str = ""


# ---------------------------------------------------------------------------
# Prompt injection
# ---------------------------------------------------------------------------

# Evaluated top to bottom; every match is reported.
INJECTION_PATTERNS: list[tuple[re.Pattern, Severity, str]] = [
    (re.compile(r"ignore\s+(?:all\s+)?previous\s+instructions", re.I), Severity.BLOCK, "instruction_override"),
    (re.compile(r"ignore\s+(?:all\s+)?above\s+instructions", re.I), Severity.BLOCK, "instruction_override"),
    (re.compile(r"disregard\s+(?:all\s+)?previous", re.I), Severity.BLOCK, "instruction_override"),
    (re.compile(r"you\s+are\s+now\s+(?:a|an)\s+", re.I), Severity.BLOCK, "role_hijack"),
    (re.compile(r"new\s+instructions?\s*:", re.I), Severity.BLOCK, "instruction_override"),
    (re.compile(r"system\s*:\s*", re.I), Severity.WARN, "system_prompt_injection"),
    (re.compile(r"<\s*system\s*>", re.I), Severity.BLOCK, "xml_injection"),
    (re.compile(r"<\s*/\s*system\s*>", re.I), Severity.BLOCK, "xml_injection"),
    (re.compile(r"\[INST\]", re.I), Severity.BLOCK, "delimiter_injection"),
    (re.compile(r"<<\s*SYS\s*>>", re.I), Severity.BLOCK, "delimiter_injection"),
    (re.compile(r"reveal\s+(?:your\s+)?system\s+prompt", re.I), Severity.WARN, "prompt_extraction"),
    (re.compile(r"print\s+(?:your\s+)?(?:system\s+)?instructions", re.I), Severity.WARN, "prompt_extraction"),
    (re.compile(r"what\s+(?:are|is)\s+your\s+(?:system\s+)?prompt", re.I), Severity.WARN, "prompt_extraction"),
]


def detect_prompt_injection(content: str) -> list[Violation]:
    """Return a violation for every injection pattern that matches *content*."""
    violations: list[Violation] = []
    if not content:
        return violations
    for pattern, severity, kind in INJECTION_PATTERNS:
        match = pattern.search(content)
        if match:
            violations.append(Violation(
                type=kind,
                severity=severity,
                detail=f'Matched pattern: "{match.group(0)}"',
            ))
    return violations


# ---------------------------------------------------------------------------
# Tool output
# ---------------------------------------------------------------------------

BLOCKED_OUTPUT_PATTERNS: list[re.Pattern] = [
    # Private IPv4 ranges
    re.compile(
        r"\b(?:10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
        r"|172\.(?:1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}"
        r"|192\.168\.\d{1,3}\.\d{1,3})\b"
    ),
    # Environment variable assignments (DATABASE_URL=...)
    re.compile(r"\b[A-Z_]{4,}=\S+"),
    # Datastore connection strings
    re.compile(r"(?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis)://\S+", re.I),
]

REDACTION_MARKER = "[REDACTED]"
TRUNCATION_MARKER = "\n[TRUNCATED]"
DEFAULT_MAX_OUTPUT_LENGTH = 50_000


def filter_tool_output(
    content: str,
    max_length: int = DEFAULT_MAX_OUTPUT_LENGTH,
    redact: bool = True,
    block_patterns: Optional[Iterable[re.Pattern]] = None,
) -> FilterResult:
    """Redact PII and infrastructure details from tool output, then cap its length."""
    violations: list[Violation] = []
    filtered = redact_pii(content) if redact else content

    for pattern in (block_patterns if block_patterns is not None else BLOCKED_OUTPUT_PATTERNS):
        filtered, count = pattern.subn(REDACTION_MARKER, filtered)
        if count:
            violations.append(Violation(
                type="blocked_pattern",
                severity=Severity.WARN,
                detail="Content matched blocked output pattern",
            ))

    if len(filtered) > max_length:
        violations.append(Violation(
            type="length_exceeded",
            severity=Severity.WARN,
            detail=f"Output truncated from {len(content)} to {max_length} chars",
        ))
        filtered = filtered[:max_length] + TRUNCATION_MARKER

    return FilterResult(filtered=filtered, violations=violations)


# ---------------------------------------------------------------------------
# Final response
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_LEAK_PATTERNS: list[re.Pattern] = [
    re.compile(r"my\s+system\s+prompt\s+(?:is|says|reads)", re.I),
    re.compile(r"here\s+(?:is|are)\s+my\s+(?:system\s+)?instructions", re.I),
    re.compile(r"I\s+was\s+instructed\s+to\s+(?:never|always|not)\b", re.I),
    re.compile(r"my\s+instructions\s+(?:say|tell|state)\b", re.I),
]


def filter_response(content: str, redact: bool = True) -> FilterResult:
    """Redact PII from the final model text and flag system-prompt leakage."""
    violations: list[Violation] = []
    filtered = redact_pii(content) if redact else content

    for pattern in SYSTEM_PROMPT_LEAK_PATTERNS:
        if pattern.search(filtered):
            violations.append(Violation(
                type="system_prompt_leak",
                severity=Severity.WARN,
                detail="Response may contain system prompt leakage",
            ))
            break

    return FilterResult(filtered=filtered, violations=violations)


def wrap_tool_output(tool_name: str, content: str) -> str:
    """Fence tool output so the model treats it as data, not instructions."""
    return f"[TOOL_RESULT: {tool_name}]\n{content}\n[/TOOL_RESULT]"


# ---------------------------------------------------------------------------
# Destructive actions
# ---------------------------------------------------------------------------

DESTRUCTIVE_ACTIONS: frozenset[str] = frozenset({
    "email.send",
    "social.post",
    "finance.payment",
    "finance.invoice",
    "code.deploy",
    "crm.update_contact",
    "data.export",
})


def is_destructive_action(action: str, destructive: Iterable[str] = DESTRUCTIVE_ACTIONS) -> bool:
    return action in destructive


def verify_destructive_action(
    action: str,
    agent_type: str,
    metadata: Optional[Mapping[str, Any]] = None,
    destructive: Iterable[str] = DESTRUCTIVE_ACTIONS,
) -> DestructiveCheck:
    """
    Decide whether an agent may perform *action*.

    Non-destructive actions always pass. Tool-type agents are refused every
    destructive action whatever their flags say. Everyone else needs
    ``metadata["allow_destructive"] is True``; truthy non-bool values do not count.
    """
    if not is_destructive_action(action, destructive):
        return DestructiveCheck(allowed=True)

    if str(getattr(agent_type, "value", agent_type)) == "tool":
        return DestructiveCheck(
            allowed=False,
            reason=f"Tool agents cannot perform destructive action: {action}",
        )

    if (metadata or {}).get("allow_destructive") is not True:
        return DestructiveCheck(
            allowed=False,
            reason=f"Agent does not have allow_destructive permission for: {action}",
        )

    return DestructiveCheck(allowed=True)


class SafetyFilter:
    """
    Configured front door to the content policy.

    The loop and the executor hold one of these instead of calling the module
    functions directly so limits and the destructive set come from config,
    and so violation counts are visible in stats.
    """

    def __init__(self, config: Optional[SafetyConfig] = None):
        self._config = config or SafetyConfig()
        self._destructive = (
            frozenset(self._config.destructive_actions)
            if self._config.destructive_actions
            else DESTRUCTIVE_ACTIONS
        )
        self._violation_counts: dict[str, int] = {}
        self._lock = threading.Lock()

        logger.info(
            "safety_filter.initialized",
            max_tool_output_length=self._config.max_tool_output_length,
            redact_pii=self._config.redact_pii,
            destructive_actions=sorted(self._destructive),
        )

    @property
    def destructive_actions(self) -> frozenset[str]:
        return self._destructive

    def _record(self, violations: list[Violation]) -> None:
        if not violations:
            return
        with self._lock:
            for v in violations:
                self._violation_counts[v.type] = self._violation_counts.get(v.type, 0) + 1

    def scan_inbound(self, content: str) -> list[Violation]:
        violations = detect_prompt_injection(content)
        self._record(violations)
        return violations

    def filter_tool_output(self, content: str) -> FilterResult:
        result = filter_tool_output(
            content,
            max_length=self._config.max_tool_output_length,
            redact=self._config.redact_pii,
        )
        self._record(result.violations)
        return result

    def filter_response(self, content: str) -> FilterResult:
        result = filter_response(content, redact=self._config.redact_pii)
        self._record(result.violations)
        return result

    def wrap_tool_output(self, tool_name: str, content: str) -> str:
        return wrap_tool_output(tool_name, content)

    def is_destructive(self, action: str) -> bool:
        return is_destructive_action(action, self._destructive)

    def verify(
        self,
        action: str,
        agent_type: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> DestructiveCheck:
        return verify_destructive_action(action, agent_type, metadata, self._destructive)

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "violations": dict(self._violation_counts),
                "destructive_actions": len(self._destructive),
            }
