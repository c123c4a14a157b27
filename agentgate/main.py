"""
AgentGate — Main Entry Point.

Configures logging once for every entry point and hands control to the
click command group in ``agentgate.cli.app``.

Usage:
    agentgate serve
    agentgate run --key agk_... "list my open tasks"
    agentgate agents create ops-bot --capability tasks --capability crm
"""

from __future__ import annotations

import functools
import logging
import os

import structlog

_logging_configured = False

_SENSITIVE_KEYS = ("content", "command", "response", "text", "query")
_MAX_DISPLAY_LEN = 120


@functools.lru_cache(maxsize=1)
def _get_log_redactor():  # noqa: ANN202
    from agentgate.privacy.redaction import PIIRedactor

    return PIIRedactor(enabled=True)


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that redacts free-text fields before they are written.

    Commands and model output routinely carry personal data. PII tokens are
    replaced before truncation so full patterns never reach the log.
    """
    for key in _SENSITIVE_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str):
            val = _get_log_redactor().redact(val)
            if len(val) > _MAX_DISPLAY_LEN:
                val = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
            event_dict[key] = val
    return event_dict


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("AGENTGATE_LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.environ.get("AGENTGATE_LOG_JSON", "").strip().lower() in ("1", "true", "yes")

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_sensitive_fields,
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the agentgate command."""
    configure_logging()
    from agentgate.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
