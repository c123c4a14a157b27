"""Tool system — the catalog, its capability table, and execution."""

from agentgate.tools.capabilities import ACTION_CAPABILITY_MAP, can_perform_action
from agentgate.tools.executor import HttpActionDelegate, ToolExecutor, ToolOutput
from agentgate.tools.registry import LoadedTools, ToolDefinition, ToolRegistry, load_tools

__all__ = [
    "ACTION_CAPABILITY_MAP",
    "HttpActionDelegate",
    "LoadedTools",
    "ToolDefinition",
    "ToolExecutor",
    "ToolOutput",
    "ToolRegistry",
    "can_perform_action",
    "load_tools",
]
