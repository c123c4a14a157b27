"""
Capability table — which capability an agent needs to perform an action.

Actions follow the pattern "<domain>.<operation>". The table is closed and
read-only: an action that is not listed is denied, and a tool whose action is
not listed fails registry validation at startup. System actions map to the
empty string and need no capability.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

ACTION_CAPABILITY_MAP: Mapping[str, str] = MappingProxyType({
    # CRM
    "query.contacts": "crm",
    "query.deals": "crm",
    "query.interactions": "crm",
    "crm.create_contact": "crm",
    "crm.update_contact": "crm",
    "crm.search": "crm",

    # Knowledge base
    "kb.search": "kb",
    "kb.ingest": "kb",
    "kb.summarize": "kb",

    # Video
    "video.transcode": "video",
    "video.analyze": "video",

    # Meta-analysis
    "analysis.cross_domain": "meta_analysis",
    "analysis.patterns": "meta_analysis",
    "analysis.report": "meta_analysis",

    # Email
    "email.send": "email",
    "email.draft": "email",
    "email.search": "email",

    # Calendar
    "calendar.create_event": "calendar",
    "calendar.list_events": "calendar",
    "calendar.check_availability": "calendar",

    # Tasks
    "tasks.create": "tasks",
    "tasks.update": "tasks",
    "tasks.list": "tasks",
    "tasks.complete": "tasks",

    # Documents
    "documents.create": "documents",
    "documents.edit": "documents",
    "documents.search": "documents",

    # Research
    "research.web_search": "research",
    "research.summarize": "research",
    "research.gather": "research",

    # Code
    "code.generate": "code",
    "code.review": "code",
    "code.deploy": "code",

    # Data
    "data.transform": "data",
    "data.query": "data",
    "data.export": "data",

    # Social
    "social.post": "social",
    "social.schedule": "social",
    "social.analytics": "social",

    # Finance
    "finance.invoice": "finance",
    "finance.report": "finance",
    "finance.payment": "finance",

    # Automation
    "automation.trigger": "automation",
    "automation.schedule": "automation",
    "workflow.execute": "automation",

    # System (no capability required)
    "agent.status": "",
    "agent.capabilities": "",
    "workflow.status": "",
    "integration.status": "",
})

KNOWN_CAPABILITIES: frozenset[str] = frozenset(c for c in ACTION_CAPABILITY_MAP.values() if c)


def required_capability(action: str) -> str | None:
    """Capability needed for *action*; None when the action is unmapped."""
    return ACTION_CAPABILITY_MAP.get(action)


def can_perform_action(capabilities: Iterable[str], action: str) -> bool:
    """
    Check whether an agent holding *capabilities* may perform *action*.

    Unmapped actions are denied. System actions (empty requirement) are
    allowed for everyone. Otherwise the required capability must be held.
    """
    required = ACTION_CAPABILITY_MAP.get(action)
    if required is None:
        return False
    if required == "":
        return True
    return required in set(capabilities)


def unmapped_actions(actions: Iterable[str]) -> list[str]:
    """Return the actions absent from the capability table, sorted and unique."""
    return sorted({a for a in actions if a not in ACTION_CAPABILITY_MAP})
