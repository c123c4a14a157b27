"""Tests for agentgate.tools.registry and the default catalog."""

from __future__ import annotations

import json

import pytest

from agentgate.tools.capabilities import ACTION_CAPABILITY_MAP
from agentgate.tools.catalog import default_tool_definitions
from agentgate.tools.registry import (
    LoadedTools,
    ToolDefinition,
    ToolRegistry,
    UnmappedActionError,
    load_tools,
)


def _tool(name: str, capability: str = "tasks", action: str = "tasks.list", **kwargs) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": {}},
        capability_name=capability,
        action_name=action,
        **kwargs,
    )


class TestLoadTools:
    def test_filters_by_capability(self) -> None:
        loaded = load_tools(["tasks"], [_tool("a"), _tool("b", "crm", "crm.search")])
        assert [t["name"] for t in loaded.tools] == ["a"]
        assert loaded.action_map == {"a": "tasks.list"}

    def test_inactive_tools_hidden(self) -> None:
        loaded = load_tools(["tasks"], [_tool("a", is_active=False)])
        assert len(loaded) == 0
        assert loaded.resolve("a") is None

    def test_no_capabilities_no_tools(self, registry) -> None:
        loaded = registry.load_for([])
        assert loaded.tools == []
        assert loaded.action_map == {}

    def test_api_format(self) -> None:
        loaded = load_tools(["tasks"], [_tool("a")])
        assert loaded.tools[0] == {
            "name": "a",
            "description": "a tool",
            "input_schema": {"type": "object", "properties": {}},
        }

    def test_schemas_by_name(self) -> None:
        loaded = LoadedTools(
            tools=[{"name": "a", "description": "", "input_schema": {"type": "object"}}],
            action_map={"a": "tasks.list"},
        )
        assert loaded.schemas_by_name == {"a": {"type": "object"}}


class TestToolRegistry:
    def test_name_collision_rejected(self) -> None:
        registry = ToolRegistry([_tool("a")])
        with pytest.raises(ValueError):
            registry.register(_tool("a", action="tasks.create"))

    def test_override_allowed(self) -> None:
        registry = ToolRegistry([_tool("a")])
        registry.register(_tool("a", action="tasks.create"), allow_override=True)
        assert registry.get("a").action_name == "tasks.create"

    def test_unregister(self) -> None:
        registry = ToolRegistry([_tool("a")])
        assert registry.unregister("a")
        assert not registry.unregister("a")
        assert registry.count == 0

    def test_set_active(self) -> None:
        registry = ToolRegistry([_tool("a"), _tool("b")])
        assert registry.set_active("a", False)
        assert not registry.set_active("missing", False)
        assert registry.active_count == 1
        assert [t["name"] for t in registry.load_for(["tasks"]).tools] == ["b"]

    def test_validate_reports_unmapped(self) -> None:
        registry = ToolRegistry([_tool("a"), _tool("b", action="shell.exec"), _tool("c", action="db.drop")])
        with pytest.raises(UnmappedActionError) as exc_info:
            registry.validate()
        assert exc_info.value.actions == ["db.drop", "shell.exec"]

    def test_validate_allows_capability_mismatch(self) -> None:
        ToolRegistry([_tool("a", capability="tasks", action="email.send")]).validate()

    def test_from_json(self, tmp_path) -> None:
        path = tmp_path / "tools.json"
        path.write_text(json.dumps([
            {
                "name": "list_tasks",
                "description": "List tasks",
                "capability_name": "tasks",
                "action_name": "tasks.list",
            },
            {
                "name": "old_tool",
                "capability_name": "tasks",
                "action_name": "tasks.update",
                "is_active": False,
            },
        ]))
        registry = ToolRegistry.from_json(path)
        assert registry.count == 2
        assert registry.active_count == 1
        assert registry.get("list_tasks").input_schema == {"type": "object", "properties": {}}

    def test_from_json_requires_array(self, tmp_path) -> None:
        path = tmp_path / "tools.json"
        path.write_text(json.dumps({"name": "x"}))
        with pytest.raises(ValueError):
            ToolRegistry.from_json(path)

    def test_list_tools(self) -> None:
        assert ToolRegistry([_tool("a")]).list_tools() == [
            {"name": "a", "capability": "tasks", "action": "tasks.list", "active": True}
        ]


class TestDefaultCatalog:
    def test_every_action_is_mapped(self, registry) -> None:
        registry.validate()
        for tool in registry.definitions:
            assert tool.action_name in ACTION_CAPABILITY_MAP

    def test_names_unique(self) -> None:
        names = [t.name for t in default_tool_definitions()]
        assert len(names) == len(set(names))

    def test_visibility_matches_requirement(self) -> None:
        for tool in default_tool_definitions():
            assert ACTION_CAPABILITY_MAP[tool.action_name] == tool.capability_name, tool.name

    def test_schemas_are_objects(self) -> None:
        for tool in default_tool_definitions():
            assert tool.input_schema["type"] == "object"
            for required in tool.input_schema.get("required", []):
                assert required in tool.input_schema["properties"]

    def test_crm_agent_sees_crm_tools(self, registry) -> None:
        loaded = registry.load_for(["crm"])
        assert set(loaded.action_map.values()) <= {
            action for action, cap in ACTION_CAPABILITY_MAP.items() if cap == "crm"
        }
        assert "search_contacts" in loaded.action_map
