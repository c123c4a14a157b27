"""
Tool Executor — the boundary between "the model asked for an action" and
the action actually running.

The executor never decides WHETHER a tool may run; capability and
destructive-action checks happen in the conversation loop before it is
called. What the executor enforces is that running it is well-behaved:

1. VALIDATION: input is checked against the tool's JSON Schema first
2. TIMEOUT PROTECTION: no delegate can hold the loop forever
3. ERROR CAPTURE: every failure becomes an is_error result the model can see
4. OBSERVABILITY: every execution is logged and counted

The delegate that performs the action is injected. In production it is an
``HttpActionDelegate`` posting to the action gateway; tests pass a plain
async function.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ToolOutput:
    """What a tool invocation produced, as text for the tool_result block."""
    result: str
    is_error: bool = False


ActionDelegate = Callable[[str, str, dict[str, Any], str], Awaitable[Union[ToolOutput, str, Any]]]


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _check_parameter(name: str, declared: dict[str, Any], value: Any) -> Optional[str]:
    expected = declared.get("type")
    accepted = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
    if accepted is not None:
        # JSON has no boolean-as-number
        if isinstance(value, bool) and expected in ("integer", "number"):
            return f"Parameter '{name}' expected {expected}, got boolean"
        if not isinstance(value, accepted):
            return f"Parameter '{name}' expected {expected}, got {type(value).__name__}"
    choices = declared.get("enum")
    if choices and value not in choices:
        return f"Parameter '{name}' must be one of: {', '.join(map(str, choices))}"
    return None


def validate_tool_input(
    schema: dict[str, Any],
    tool_input: dict[str, Any],
) -> Optional[str]:
    """
    Check *tool_input* against the required list, declared types and enums
    of *schema*. Undeclared parameters pass through.

    Returns the first problem found, or None.
    """
    if not isinstance(tool_input, dict):
        return f"Tool input must be an object, got {type(tool_input).__name__}"

    missing = [name for name in schema.get("required", ()) if name not in tool_input]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    declared_params = schema.get("properties") or {}
    for name, value in tool_input.items():
        declared = declared_params.get(name)
        if isinstance(declared, dict):
            problem = _check_parameter(name, declared, value)
            if problem:
                return problem
    return None


def _error_payload(message: str) -> str:
    return json.dumps({"error": message})


def _coerce_output(value: Any) -> ToolOutput:
    if isinstance(value, ToolOutput):
        return value
    if isinstance(value, str):
        return ToolOutput(result=value)
    try:
        return ToolOutput(result=json.dumps(value, default=str))
    except (TypeError, ValueError):
        return ToolOutput(result=str(value))


class ToolExecutor:
    """
    Runs tool actions through an injected delegate with validation, a timeout
    and error capture. ``execute`` never raises for delegate failures.

    Outcomes are counted as ``ok``, ``error`` (the delegate reported one),
    ``invalid_input``, ``timeout`` and ``exception``.
    """

    def __init__(self, delegate: ActionDelegate, default_timeout: float = 15.0):
        self._delegate = delegate
        self._default_timeout = default_timeout
        self._outcomes: Counter[str] = Counter()

    async def execute(
        self,
        tool_name: str,
        action_name: str,
        tool_input: dict[str, Any],
        *,
        agent_id: str = "",
        schema: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ToolOutput:
        started = time.monotonic()
        log = logger.bind(tool_name=tool_name, action=action_name, agent_id=agent_id)

        problem = validate_tool_input(schema, tool_input) if schema is not None else None
        if problem:
            return self._reject(log, "invalid_input", problem)

        limit = self._default_timeout if timeout is None else timeout
        try:
            raw = await asyncio.wait_for(
                self._delegate(tool_name, action_name, tool_input, agent_id),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            return self._reject(log, "timeout", f"Tool execution timed out after {limit}s")
        except Exception as e:
            log.error("tool_executor.delegate_raised", exc_info=True)
            return self._reject(log, "exception", f"{type(e).__name__}: {e}")

        output = _coerce_output(raw)
        self._outcomes["error" if output.is_error else "ok"] += 1
        log.info(
            "tool_executor.completed",
            is_error=output.is_error,
            elapsed=round(time.monotonic() - started, 3),
            result_length=len(output.result),
        )
        return output

    def _reject(self, log: Any, outcome: str, message: str) -> ToolOutput:
        self._outcomes[outcome] += 1
        log.warning("tool_executor.rejected", outcome=outcome, error=message)
        return ToolOutput(result=_error_payload(message), is_error=True)

    @property
    def stats(self) -> dict[str, int]:
        counts = dict(self._outcomes)
        counts["total"] = sum(self._outcomes.values())
        return counts


class HttpActionDelegate:
    """
    Performs actions by POSTing ``{action, agent_id, parameters}`` to the
    action gateway. Non-2xx responses come back as is_error results carrying
    the gateway's error message; transport errors propagate to the executor.
    """

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __call__(
        self,
        tool_name: str,
        action_name: str,
        tool_input: dict[str, Any],
        agent_id: str,
    ) -> ToolOutput:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        response = await self._client.post(
            self._url,
            headers=headers,
            json={"action": action_name, "agent_id": agent_id, "parameters": tool_input},
        )
        try:
            data = response.json()
        except ValueError:
            data = {"error": response.text[:500]}

        if response.is_success:
            return ToolOutput(result=json.dumps(data, default=str))

        error = data.get("error") if isinstance(data, dict) else None
        logger.warning(
            "action_delegate.failed",
            tool_name=tool_name,
            action=action_name,
            status=response.status_code,
            error=error,
        )
        return ToolOutput(result=_error_payload(error or "Action failed"), is_error=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def unconfigured_delegate(
    tool_name: str,
    action_name: str,
    tool_input: dict[str, Any],
    agent_id: str,
) -> ToolOutput:
    """Delegate used when no action gateway is configured."""
    return ToolOutput(
        result=_error_payload(f"No action gateway configured for: {action_name}"),
        is_error=True,
    )
