"""
Deterministic stand-ins for the model backend and the action delegate.

The mock message types mirror the parts of ``anthropic.types.Message`` the
loop reads: ``content`` blocks with a ``type`` attribute and ``stop_reason``.
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from agentgate.types import Agent, AgentType


# ---------------------------------------------------------------------------
# Mock Claude API types
# ---------------------------------------------------------------------------

@dataclass
class MockTextBlock:
    type: str = "text"
    text: str = ""


@dataclass
class MockToolUseBlock:
    type: str = "tool_use"
    id: str = "toolu_1"
    name: str = ""
    input: dict = field(default_factory=dict)


@dataclass
class MockMessage:
    content: list = field(default_factory=list)
    stop_reason: str = "end_turn"


_ids = itertools.count(1)


def text_reply(text: str) -> MockMessage:
    return MockMessage(content=[MockTextBlock(text=text)], stop_reason="end_turn")


def tool_reply(*calls: tuple[str, dict], preamble: str = "") -> MockMessage:
    """A response asking for each ``(tool_name, input)`` in *calls*, in order."""
    content: list = [MockTextBlock(text=preamble)] if preamble else []
    for name, tool_input in calls:
        content.append(MockToolUseBlock(id=f"toolu_{next(_ids)}", name=name, input=tool_input))
    return MockMessage(content=content, stop_reason="tool_use")


# ---------------------------------------------------------------------------
# MockModelBackend
# ---------------------------------------------------------------------------

Scripted = Union[MockMessage, Exception]


class MockModelBackend:
    """
    Returns pre-scripted responses in order.

    A scripted Exception is raised instead of returned. When *responder* is
    given it is called with the call index for every request, which lets a
    test script an unbounded exchange (e.g. a model that never stops asking
    for tools).
    """

    def __init__(
        self,
        responses: Optional[list[Scripted]] = None,
        responder: Optional[Callable[[int], Scripted]] = None,
        on_think: Optional[Callable[[], None]] = None,
    ):
        self._responses = list(responses or [])
        self._responder = responder
        self._on_think = on_think
        self.calls: list[dict[str, Any]] = []

    async def think(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> MockMessage:
        index = len(self.calls)
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": copy.deepcopy(messages),
            "tools": tools,
        })
        if self._on_think is not None:
            self._on_think()
        if self._responder is not None:
            item = self._responder(index)
        elif self._responses:
            item = self._responses.pop(0)
        else:
            item = text_reply("[no more scripted responses]")
        if isinstance(item, Exception):
            raise item
        return item

    def extract_text(self, response: MockMessage) -> str:
        return "\n".join(b.text for b in response.content if b.type == "text")

    def extract_tool_calls(self, response: MockMessage) -> list[dict[str, Any]]:
        return [
            {"id": b.id, "name": b.name, "input": b.input}
            for b in response.content
            if b.type == "tool_use"
        ]


# ---------------------------------------------------------------------------
# Action delegate
# ---------------------------------------------------------------------------

class RecordingDelegate:
    """Records every action it is asked to perform and returns *result*."""

    def __init__(self, result: Any = '{"ok": true}', error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[str, str, dict, str]] = []

    async def __call__(
        self,
        tool_name: str,
        action_name: str,
        tool_input: dict[str, Any],
        agent_id: str,
    ) -> Any:
        self.calls.append((tool_name, action_name, tool_input, agent_id))
        if self.error is not None:
            raise self.error
        return self.result


def make_agent(**overrides: Any) -> Agent:
    defaults: dict[str, Any] = {
        "id": "agent-1",
        "name": "ops-bot",
        "type": AgentType.AUTONOMOUS,
        "capabilities": ("tasks",),
    }
    defaults.update(overrides)
    return Agent(**defaults)
