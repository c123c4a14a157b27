"""
Tool Registry — the catalog of tools agents may be shown.

Every tool is registered with its JSON Schema, description, the capability
an agent must hold to *see* it, and the action it performs when invoked.
The registry serves two purposes:

1. DISCOVERY: for one agent, produce the tools array for the model call:
   only active tools whose capability the agent holds.

2. DISPATCH: map a tool name from a tool_use block to its action. The map is
   built from the filtered set only, so a tool the agent cannot see cannot be
   invoked even if the model names it.

Tool descriptions are treated as prompts: they tell the model not just WHAT
a tool does but WHEN to reach for it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

from agentgate.tools.capabilities import required_capability, unmapped_actions

logger = structlog.get_logger(__name__)


class UnmappedActionError(ValueError):
    """Raised when catalog tools point at actions missing from the capability table."""

    def __init__(self, actions: list[str]):
        self.actions = actions
        super().__init__(
            "Tool catalog references actions with no capability mapping: "
            + ", ".join(actions)
        )


@dataclass
class ToolDefinition:
    """
    A registered tool.

    The JSON schema is exactly what goes to the model in the 'tools' array.
    ``capability_name`` gates visibility; ``action_name`` is what actually
    runs, and is authorized separately against the capability table.
    """
    name: str
    description: str
    input_schema: dict[str, Any]
    capability_name: str
    action_name: str
    is_active: bool = True

    def to_api_format(self) -> dict[str, Any]:
        """
        Convert to the shape the Messages API expects:
        {"name": ..., "description": ..., "input_schema": {...}}
        """
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDefinition":
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            input_schema=dict(data.get("input_schema") or {"type": "object", "properties": {}}),
            capability_name=str(data["capability_name"]),
            action_name=str(data["action_name"]),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class LoadedTools:
    """The tools one agent may use for one command."""
    tools: list[dict[str, Any]] = field(default_factory=list)
    action_map: dict[str, str] = field(default_factory=dict)

    def resolve(self, tool_name: str) -> Optional[str]:
        return self.action_map.get(tool_name)

    @property
    def schemas_by_name(self) -> dict[str, dict[str, Any]]:
        return {t["name"]: t.get("input_schema", {}) for t in self.tools}

    def __len__(self) -> int:
        return len(self.tools)


def load_tools(
    capabilities: Iterable[str],
    all_defs: Iterable[ToolDefinition],
) -> LoadedTools:
    """Filter *all_defs* down to what an agent holding *capabilities* may see."""
    held = set(capabilities)
    loaded = LoadedTools()
    for tool in all_defs:
        if not tool.is_active:
            continue
        if tool.capability_name not in held:
            continue
        loaded.tools.append(tool.to_api_format())
        loaded.action_map[tool.name] = tool.action_name
    return loaded


class ToolRegistry:
    """
    Central registry for tool definitions.

    The registry supports:
    - Registering tools, blocking accidental name collisions
    - Loading the visible subset for a capability set
    - Validating the catalog against the capability table
    - Enabling/disabling tools at runtime
    """

    def __init__(self, tools: Optional[Iterable[ToolDefinition]] = None):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or ():
            self.register(tool)
        logger.info("tool_registry.initialized", count=len(self._tools))

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Register a tool, blocking accidental name collisions by default."""
        existing = self._tools.get(tool.name)
        if existing is not None and not allow_override:
            logger.warning(
                "tool_registry.name_collision",
                name=tool.name,
                existing_action=existing.action_name,
                new_action=tool.action_name,
            )
            raise ValueError(
                f"Tool '{tool.name}' is already registered. "
                "Use allow_override=True for an explicit replacement."
            )
        self._tools[tool.name] = tool
        logger.debug(
            "tool_registry.registered",
            name=tool.name,
            capability=tool.capability_name,
            action=tool.action_name,
        )

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.info("tool_registry.unregistered", name=name)
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def set_active(self, name: str, active: bool) -> bool:
        tool = self._tools.get(name)
        if tool is None:
            return False
        tool.is_active = active
        logger.info("tool_registry.toggled", name=name, active=active)
        return True

    @property
    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def load_for(self, capabilities: Iterable[str]) -> LoadedTools:
        """Tools and action map for an agent holding *capabilities*."""
        caps = list(capabilities)
        loaded = load_tools(caps, self._tools.values())
        logger.info("tool_registry.loaded", count=len(loaded), capabilities=caps)
        return loaded

    def validate(self) -> None:
        """
        Fail fast if any tool points at an action outside the capability table.

        Also warns when a tool's visibility capability differs from the
        capability its action requires. Legal, but usually a catalog typo.
        """
        missing = unmapped_actions(t.action_name for t in self._tools.values())
        if missing:
            logger.error("tool_registry.unmapped_actions", actions=missing)
            raise UnmappedActionError(missing)
        for tool in self._tools.values():
            required = required_capability(tool.action_name)
            if required and required != tool.capability_name:
                logger.warning(
                    "tool_registry.capability_mismatch",
                    tool=tool.name,
                    visible_with=tool.capability_name,
                    action_requires=required,
                )

    @classmethod
    def from_json(cls, path: Path) -> "ToolRegistry":
        """Build a registry from a JSON array of tool definition objects."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Tool catalog {path} must contain a JSON array")
        return cls(ToolDefinition.from_dict(item) for item in data)

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "capability": tool.capability_name,
                "action": tool.action_name,
                "active": tool.is_active,
            }
            for tool in self._tools.values()
        ]

    @property
    def count(self) -> int:
        return len(self._tools)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tools.values() if t.is_active)
