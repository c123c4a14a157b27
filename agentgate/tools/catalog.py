"""
Default tool catalog.

These are the tools agents see when no catalog file is configured. Each one
maps to exactly one action in the capability table; registry validation at
startup guarantees it stays that way.
"""

from __future__ import annotations

from typing import Any

from agentgate.tools.registry import ToolDefinition, ToolRegistry


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_STR = {"type": "string"}


def default_tool_definitions() -> list[ToolDefinition]:
    return [
        # --- CRM ---
        ToolDefinition(
            name="search_contacts",
            description="Search CRM contacts by name, email, company, or tags",
            input_schema=_schema(
                {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Max results", "default": 10},
                },
                ["query"],
            ),
            capability_name="crm",
            action_name="query.contacts",
        ),
        ToolDefinition(
            name="create_contact",
            description="Create a new CRM contact",
            input_schema=_schema(
                {
                    "first_name": _STR,
                    "last_name": _STR,
                    "email": _STR,
                    "company": _STR,
                    "contact_type": {
                        "type": "string",
                        "enum": ["lead", "prospect", "client", "partner", "vendor", "personal", "other"],
                    },
                },
                ["first_name", "last_name"],
            ),
            capability_name="crm",
            action_name="crm.create_contact",
        ),
        ToolDefinition(
            name="update_contact",
            description="Update an existing CRM contact",
            input_schema=_schema(
                {
                    "contact_id": {"type": "string", "description": "UUID of the contact"},
                    "updates": {"type": "object", "description": "Fields to update"},
                },
                ["contact_id", "updates"],
            ),
            capability_name="crm",
            action_name="crm.update_contact",
        ),
        # --- Knowledge base ---
        ToolDefinition(
            name="search_knowledge_base",
            description="Search the knowledge base for relevant articles and documents",
            input_schema=_schema(
                {"query": {"type": "string", "description": "Search query"}, "limit": {"type": "integer", "default": 5}},
                ["query"],
            ),
            capability_name="kb",
            action_name="kb.search",
        ),
        ToolDefinition(
            name="summarize_document",
            description="Generate a summary of a knowledge base document",
            input_schema=_schema(
                {"document_id": {"type": "string", "description": "UUID of the document"}},
                ["document_id"],
            ),
            capability_name="kb",
            action_name="kb.summarize",
        ),
        # --- Email ---
        ToolDefinition(
            name="send_email",
            description="Send an email to a recipient",
            input_schema=_schema(
                {
                    "to": {"type": "string", "description": "Recipient email"},
                    "subject": _STR,
                    "body": _STR,
                    "cc": {"type": "array", "items": _STR},
                },
                ["to", "subject", "body"],
            ),
            capability_name="email",
            action_name="email.send",
        ),
        ToolDefinition(
            name="draft_email",
            description="Create an email draft without sending",
            input_schema=_schema({"to": _STR, "subject": _STR, "body": _STR}, ["to", "subject", "body"]),
            capability_name="email",
            action_name="email.draft",
        ),
        # --- Calendar ---
        ToolDefinition(
            name="create_calendar_event",
            description="Schedule a new calendar event",
            input_schema=_schema(
                {
                    "title": _STR,
                    "start_at": {"type": "string", "description": "ISO 8601 start time"},
                    "end_at": {"type": "string", "description": "ISO 8601 end time"},
                    "description": _STR,
                    "location": _STR,
                },
                ["title", "start_at"],
            ),
            capability_name="calendar",
            action_name="calendar.create_event",
        ),
        ToolDefinition(
            name="list_calendar_events",
            description="List upcoming calendar events within a date range",
            input_schema=_schema(
                {
                    "start_date": {"type": "string", "description": "ISO 8601 start date"},
                    "end_date": {"type": "string", "description": "ISO 8601 end date"},
                    "limit": {"type": "integer", "default": 20},
                },
                ["start_date"],
            ),
            capability_name="calendar",
            action_name="calendar.list_events",
        ),
        # --- Tasks ---
        ToolDefinition(
            name="create_task",
            description="Create a new task",
            input_schema=_schema(
                {
                    "title": _STR,
                    "description": _STR,
                    "priority": {"type": "string", "enum": ["low", "medium", "high", "urgent"]},
                    "due_date": {"type": "string", "description": "ISO 8601 date"},
                },
                ["title"],
            ),
            capability_name="tasks",
            action_name="tasks.create",
        ),
        ToolDefinition(
            name="list_tasks",
            description="List tasks with optional filters",
            input_schema=_schema({
                "status": {"type": "string", "enum": ["todo", "in_progress", "review", "done"]},
                "priority": {"type": "string", "enum": ["low", "medium", "high", "urgent"]},
                "limit": {"type": "integer", "default": 20},
            }),
            capability_name="tasks",
            action_name="tasks.list",
        ),
        # --- Documents ---
        ToolDefinition(
            name="create_document",
            description="Create a new document",
            input_schema=_schema(
                {"title": _STR, "content": _STR, "tags": {"type": "array", "items": _STR}},
                ["title", "content"],
            ),
            capability_name="documents",
            action_name="documents.create",
        ),
        ToolDefinition(
            name="search_documents",
            description="Search documents by query",
            input_schema=_schema({"query": _STR, "limit": {"type": "integer", "default": 10}}, ["query"]),
            capability_name="documents",
            action_name="documents.search",
        ),
        # --- Research ---
        ToolDefinition(
            name="web_search",
            description="Search the web for information",
            input_schema=_schema(
                {
                    "query": {"type": "string", "description": "Search query"},
                    "max_results": {"type": "integer", "default": 5},
                },
                ["query"],
            ),
            capability_name="research",
            action_name="research.web_search",
        ),
        # --- Data ---
        ToolDefinition(
            name="query_data",
            description="Run a structured data query",
            input_schema=_schema(
                {
                    "table": {"type": "string", "description": "Table or view name"},
                    "filters": {"type": "object", "description": "Key-value filter conditions"},
                    "limit": {"type": "integer", "default": 50},
                },
                ["table"],
            ),
            capability_name="data",
            action_name="data.query",
        ),
    ]


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry(default_tool_definitions())
    registry.validate()
    return registry
