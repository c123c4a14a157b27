"""
Auth Gate — resolve an inbound request to a verified, rate-limited agent.

Checks run in a fixed order and stop at the first failure:

1. Credential present in the request headers
2. Credential carries the expected prefix (checked before any lookup, so
   malformed keys never reach the directory)
3. Directory resolves the credential to an active agent
4. Agent is within its per-window request limit

Nothing downstream (memory, model, tools) runs unless all four pass. Every
outcome is recorded in the audit sink.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import structlog

from agentgate.audit import AuditSink
from agentgate.auth.directory import AgentDirectory
from agentgate.auth.ratelimit import RateLimiter
from agentgate.config import AuthConfig
from agentgate.types import AuthResult, RateLimitStatus

logger = structlog.get_logger(__name__)


class AuthError(Exception):
    """Authentication or admission failure carrying the HTTP status to return."""

    def __init__(self, status: int, message: str, rate_limit: Optional[RateLimitStatus] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.rate_limit = rate_limit

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.rate_limit is not None:
            body["rateLimit"] = self.rate_limit.to_dict()
        return body


def extract_credential(headers: Mapping[str, str], header_name: str = "x-agent-key") -> Optional[str]:
    """Return the credential header value, matching the name case-insensitively."""
    wanted = header_name.lower()
    for name, value in headers.items():
        if name.lower() == wanted:
            value = (value or "").strip()
            return value or None
    return None


def _credential_hint(credential: str, prefix: str) -> str:
    """The prefix plus a few characters, enough to tell keys apart in logs."""
    return credential[: len(prefix) + 4]


class AuthGate:
    def __init__(
        self,
        directory: AgentDirectory,
        rate_limiter: RateLimiter,
        audit: AuditSink,
        config: Optional[AuthConfig] = None,
    ):
        self._directory = directory
        self._rate_limiter = rate_limiter
        self._audit = audit
        self._config = config or AuthConfig()
        self._background: set[asyncio.Task] = set()

    def _reject(
        self,
        status: int,
        message: str,
        correlation_id: Optional[str],
        *,
        agent_id: Optional[str] = None,
        credential: Optional[str] = None,
        action: str = "agent_auth.failed",
        rate_limit: Optional[RateLimitStatus] = None,
    ) -> AuthError:
        details: dict[str, Any] = {"error": message, "status": status}
        if credential:
            details["credential_prefix"] = _credential_hint(credential, self._config.key_prefix)
        if rate_limit is not None:
            details["rate_limit"] = rate_limit.to_dict()
        self._audit.emit(
            action,
            actor_type="agent" if agent_id else "anonymous",
            actor_id=agent_id,
            resource_type="agent",
            resource_id=agent_id,
            details=details,
            correlation_id=correlation_id,
        )
        logger.warning("auth_gate.rejected", status=status, error=message, agent_id=agent_id)
        return AuthError(status, message, rate_limit=rate_limit)

    async def authenticate(
        self,
        headers: Mapping[str, str],
        correlation_id: Optional[str] = None,
    ) -> AuthResult:
        """Resolve *headers* to an AuthResult or raise AuthError."""
        credential = extract_credential(headers, self._config.header_name)
        if not credential:
            raise self._reject(401, "Missing credential", correlation_id)

        if not credential.startswith(self._config.key_prefix):
            raise self._reject(401, "Invalid credential format", correlation_id, credential=credential)

        try:
            agents = await self._directory.verify(credential)
        except Exception as e:
            logger.error("auth_gate.directory_error", error=str(e), exc_info=True)
            raise self._reject(
                500, "Authentication service error", correlation_id, credential=credential
            ) from e

        if not agents:
            raise self._reject(401, "Invalid or inactive credential", correlation_id, credential=credential)

        agent = agents[0]
        if not agent.is_active:
            raise self._reject(
                401,
                "Invalid or inactive credential",
                correlation_id,
                agent_id=agent.id,
                credential=credential,
            )

        try:
            rate_limit = await self._rate_limiter.check(agent.id, agent.rate_limit_rpm)
        except Exception as e:
            logger.error("auth_gate.rate_limit_error", agent_id=agent.id, error=str(e), exc_info=True)
            raise self._reject(
                500,
                "Authentication service error",
                correlation_id,
                agent_id=agent.id,
                credential=credential,
            ) from e

        if not rate_limit.allowed:
            raise self._reject(
                429,
                "Rate limit exceeded",
                correlation_id,
                agent_id=agent.id,
                credential=credential,
                action="agent_auth.rate_limited",
                rate_limit=rate_limit,
            )

        self._schedule_touch(agent.id)

        self._audit.emit(
            "agent_auth.success",
            actor_id=agent.id,
            resource_type="agent",
            resource_id=agent.id,
            details={"agent_name": agent.name, "agent_type": agent.type.value},
            correlation_id=correlation_id,
        )
        logger.info(
            "auth_gate.authenticated",
            agent_id=agent.id,
            agent_name=agent.name,
            agent_type=agent.type.value,
            remaining=rate_limit.remaining,
        )
        return AuthResult(agent=agent, rate_limit=rate_limit)

    def _schedule_touch(self, agent_id: str) -> None:
        task = asyncio.create_task(self._touch(agent_id), name=f"touch-{agent_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch(self, agent_id: str) -> None:
        try:
            await self._directory.touch(agent_id)
        except Exception as e:
            logger.warning("auth_gate.touch_failed", agent_id=agent_id, error=str(e))

    async def drain(self) -> None:
        """Wait for pending last-seen updates."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
