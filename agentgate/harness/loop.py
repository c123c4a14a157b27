"""
The Conversation Loop — one command's bounded exchange with the model.

The pattern is the standard tool-use loop:

    for turn in range(max_turns):
        if deadline passed: stop (TIMED_OUT)
        response = backend.think(system_prompt, messages, tools)
        if no tool use: filter the text and stop (DONE)
        messages.append(assistant response)
        messages.append(one user message holding every tool result)
    stop (MAX_TURNS_REACHED)

Every tool use is authorized before it runs. The tool must be in the
agent's loaded set, the agent must hold the capability its action requires,
and destructive actions must pass the destructive gate. A call that fails
any check becomes an error tool_result; the model sees the refusal and the
loop continues. Output of tools that did run is PII-redacted, scrubbed,
truncated and wrapped before it re-enters the transcript.

Latency ceiling: the deadline is checked only at the start of a turn and an
in-flight model or tool call is never cancelled, so the worst case is
``max_turns * (model latency + slowest tool latency per turn)``, not the
configured timeout.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Optional, Protocol

import structlog

from agentgate.api.claude import DEFAULT_SYSTEM_PROMPT, ProviderError
from agentgate.audit import AuditSink
from agentgate.harness.safety import SafetyFilter, Violation
from agentgate.tools.capabilities import can_perform_action
from agentgate.tools.executor import ToolExecutor
from agentgate.tools.registry import LoadedTools
from agentgate.types import MAX_TURNS_MESSAGE, TIMEOUT_MESSAGE, Agent, LoopState

logger = structlog.get_logger(__name__)


class ModelBackend(Protocol):
    async def think(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Any: ...

    def extract_text(self, response: Any) -> str: ...

    def extract_tool_calls(self, response: Any) -> list[dict[str, Any]]: ...


def _error_result(tool_use_id: str, message: str) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": json.dumps({"error": message}),
        "is_error": True,
    }


class LoopResult:
    """Outcome of one loop run: final text, terminal state and counters."""

    def __init__(
        self,
        text: str,
        state: LoopState,
        tool_call_count: int = 0,
        turns_taken: int = 0,
        tool_names: Optional[list[str]] = None,
        messages: Optional[list[dict[str, Any]]] = None,
        violations: Optional[list[Violation]] = None,
        elapsed_seconds: float = 0.0,
    ):
        self.text = text
        self.state = state
        self.tool_call_count = tool_call_count
        self.turns_taken = turns_taken
        self.tool_names = tool_names or []
        self.messages = messages or []
        self.violations = violations or []
        self.elapsed_seconds = elapsed_seconds

    @property
    def completed(self) -> bool:
        return self.state is LoopState.DONE


class ConversationLoop:
    def __init__(
        self,
        backend: ModelBackend,
        executor: ToolExecutor,
        safety: SafetyFilter,
        audit: AuditSink,
        max_turns: int = 5,
        timeout_seconds: float = 24.0,
        system_prompt: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._executor = executor
        self._safety = safety
        self._audit = audit
        self._max_turns = max(1, int(max_turns))
        self._timeout = float(timeout_seconds)
        self._system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self._clock = clock

        self._total_runs = 0
        self._total_turns = 0
        self._total_tool_calls = 0

        logger.info(
            "conversation_loop.initialized",
            max_turns=self._max_turns,
            timeout_seconds=self._timeout,
        )

    async def run(
        self,
        agent: Agent,
        command: str,
        tools: LoadedTools,
        memory_context: str = "",
        correlation_id: Optional[str] = None,
    ) -> LoopResult:
        """
        Drive the model/tool exchange for *command* to a terminal state.

        Raises:
            ProviderError: the backend failed. Progress made so far is
                recorded on the exception; nothing is retried.
        """
        self._total_runs += 1
        start = self._clock()
        seed = f"{memory_context}\n{command}" if memory_context else command
        messages: list[dict[str, Any]] = [{"role": "user", "content": seed}]
        tool_schemas = tools.tools or None
        schemas_by_name = tools.schemas_by_name

        tool_call_count = 0
        tool_names: list[str] = []
        violations: list[Violation] = []

        logger.info(
            "conversation_loop.starting",
            agent_id=agent.id,
            tool_count=len(tools),
            with_memory=bool(memory_context),
        )

        def _finish(text: str, state: LoopState, turns: int) -> LoopResult:
            elapsed = self._clock() - start
            self._total_turns += turns
            self._total_tool_calls += tool_call_count
            return LoopResult(
                text=text,
                state=state,
                tool_call_count=tool_call_count,
                turns_taken=turns,
                tool_names=tool_names,
                messages=messages,
                violations=violations,
                elapsed_seconds=elapsed,
            )

        for turn in range(self._max_turns):
            if self._clock() - start > self._timeout:
                logger.warning(
                    "conversation_loop.timed_out",
                    agent_id=agent.id,
                    turns=turn,
                    tool_calls=tool_call_count,
                )
                return _finish(TIMEOUT_MESSAGE, LoopState.TIMED_OUT, turn)

            try:
                response = await self._backend.think(
                    system_prompt=self._system_prompt,
                    messages=messages,
                    tools=tool_schemas,
                )
            except ProviderError as e:
                e.turns_taken = turn
                e.tool_call_count = tool_call_count
                e.tool_names = list(tool_names)
                logger.error(
                    "conversation_loop.provider_error",
                    agent_id=agent.id,
                    turn=turn,
                    tool_calls=tool_call_count,
                    error=str(e),
                )
                raise

            tool_calls = self._backend.extract_tool_calls(response)
            if not tool_calls:
                filtered = self._safety.filter_response(self._backend.extract_text(response))
                if filtered.violations:
                    violations.extend(filtered.violations)
                    logger.warning(
                        "conversation_loop.response_violations",
                        agent_id=agent.id,
                        violations=[v.to_dict() for v in filtered.violations],
                    )
                logger.info(
                    "conversation_loop.complete",
                    agent_id=agent.id,
                    turns=turn + 1,
                    tool_calls=tool_call_count,
                )
                return _finish(filtered.filtered, LoopState.DONE, turn + 1)

            tool_call_count += len(tool_calls)
            messages.append({"role": "assistant", "content": response.content})

            results = []
            for call in tool_calls:
                results.append(
                    await self._dispatch(agent, call, tools, schemas_by_name, tool_names,
                                         violations, correlation_id)
                )
            messages.append({"role": "user", "content": results})

        logger.warning(
            "conversation_loop.max_turns",
            agent_id=agent.id,
            max_turns=self._max_turns,
            tool_calls=tool_call_count,
        )
        return _finish(MAX_TURNS_MESSAGE, LoopState.MAX_TURNS_REACHED, self._max_turns)

    async def _dispatch(
        self,
        agent: Agent,
        call: dict[str, Any],
        tools: LoadedTools,
        schemas_by_name: dict[str, dict[str, Any]],
        tool_names: list[str],
        violations: list[Violation],
        correlation_id: Optional[str],
    ) -> dict[str, Any]:
        """Authorize and run one tool use, returning its tool_result block."""
        tool_use_id = call["id"]
        tool_name = call["name"]

        action = tools.resolve(tool_name)
        if action is None:
            logger.warning("conversation_loop.unknown_tool", agent_id=agent.id, tool=tool_name)
            return _error_result(tool_use_id, f"Unknown tool: {tool_name}")

        if not can_perform_action(agent.capabilities, action):
            self._audit.emit(
                "tool.authorization_denied",
                actor_id=agent.id,
                resource_type="action",
                resource_id=action,
                details={"tool": tool_name, "capabilities": list(agent.capabilities)},
                correlation_id=correlation_id,
            )
            logger.warning(
                "conversation_loop.capability_denied",
                agent_id=agent.id,
                tool=tool_name,
                action=action,
            )
            return _error_result(tool_use_id, f"Insufficient capability for action: {action}")

        check = self._safety.verify(action, agent.type, agent.destructive_metadata())
        if not check.allowed:
            self._audit.emit(
                "tool.destructive_blocked",
                actor_id=agent.id,
                resource_type="action",
                resource_id=action,
                details={"tool": tool_name, "agent_type": agent.type.value, "reason": check.reason},
                correlation_id=correlation_id,
            )
            logger.warning(
                "conversation_loop.destructive_blocked",
                agent_id=agent.id,
                tool=tool_name,
                action=action,
                reason=check.reason,
            )
            return _error_result(tool_use_id, check.reason)

        tool_names.append(tool_name)
        output = await self._executor.execute(
            tool_name,
            action,
            call.get("input") or {},
            agent_id=agent.id,
            schema=schemas_by_name.get(tool_name),
        )

        filtered = self._safety.filter_tool_output(output.result)
        if filtered.violations:
            violations.extend(filtered.violations)
            logger.warning(
                "conversation_loop.tool_output_violations",
                tool=tool_name,
                violations=[v.to_dict() for v in filtered.violations],
            )

        return {
            "type": "tool_result",
            "tool_use_id": tool_use_id,
            "content": self._safety.wrap_tool_output(tool_name, filtered.filtered),
            "is_error": output.is_error,
        }

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_runs": self._total_runs,
            "total_turns": self._total_turns,
            "total_tool_calls": self._total_tool_calls,
            "avg_turns_per_run": self._total_turns / max(1, self._total_runs),
        }
