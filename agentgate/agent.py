"""
Agent Executor — the single entry point for running an agent's command.

One call to ``execute`` takes a command from an authenticated agent through
every layer of the core, in order:

1. Correlation id chosen and bound to every log line of the request
2. Credential authenticated and rate-limited (AuthGate)
3. Command scanned for prompt injection; block-severity hits stop here
4. Tools loaded for the agent's capabilities (ToolRegistry)
5. Similar past exchanges retrieved as context (MemoryService, optional)
6. The bounded model/tool exchange (ConversationLoop)
7. The exchange stored as a new memory in the background
8. An ``agent.execute`` audit event
9. The result returned to the caller

Steps 7 and 8 never delay or fail the response.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, Mapping, Optional

import structlog

from agentgate.api.claude import ClaudeBackend, ProviderError
from agentgate.audit import AuditSink, SQLiteAuditWriter, new_correlation_id
from agentgate.auth.directory import SQLiteAgentDirectory
from agentgate.auth.gate import AuthGate
from agentgate.auth.ratelimit import RateLimiter, SQLiteRateLimitStore
from agentgate.config import AgentGateConfig
from agentgate.harness.loop import ConversationLoop, LoopResult, ModelBackend
from agentgate.harness.safety import SafetyFilter, Severity
from agentgate.memory.embeddings import EmbedFn, OpenAIEmbedder
from agentgate.memory.service import MemoryService
from agentgate.memory.store import SQLiteMemoryStore
from agentgate.tools.catalog import build_default_registry
from agentgate.tools.executor import ActionDelegate, HttpActionDelegate, ToolExecutor, unconfigured_delegate
from agentgate.tools.registry import ToolRegistry
from agentgate.types import BLOCKED_MESSAGE, Agent, CommandResult, LoopState

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "x-correlation-id"
COMMAND_EXCERPT_LENGTH = 200


def correlation_id_from(headers: Mapping[str, str]) -> Optional[str]:
    for name, value in headers.items():
        if name.lower() == CORRELATION_HEADER and value and value.strip():
            return value.strip()[:128]
    return None


class AgentExecutor:
    def __init__(
        self,
        auth_gate: AuthGate,
        registry: ToolRegistry,
        memory: Optional[MemoryService],
        loop: ConversationLoop,
        safety: SafetyFilter,
        audit: AuditSink,
    ):
        self._auth = auth_gate
        self._registry = registry
        self._memory = memory
        self._loop = loop
        self._safety = safety
        self._audit = audit
        self._background: set[asyncio.Task] = set()
        self._closers: list[Callable[[], Any]] = []

    @property
    def audit(self) -> AuditSink:
        return self._audit

    def add_closer(self, closer: Callable[[], Any]) -> None:
        """Register a resource cleanup to run on ``close``."""
        self._closers.append(closer)

    async def execute(
        self,
        headers: Mapping[str, str],
        command: str,
        session_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> CommandResult:
        """
        Run *command* for the agent identified by *headers*.

        Raises:
            AuthError: the caller was not admitted; nothing else ran.
            ProviderError: the model backend failed mid-command.
        """
        correlation_id = correlation_id or correlation_id_from(headers) or new_correlation_id()
        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            return await self._execute(headers, command, session_id, correlation_id)

    async def _execute(
        self,
        headers: Mapping[str, str],
        command: str,
        session_id: Optional[str],
        correlation_id: str,
    ) -> CommandResult:
        started = time.monotonic()
        auth = await self._auth.authenticate(headers, correlation_id)
        agent = auth.agent

        def _duration_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        inbound = self._safety.scan_inbound(command)
        blocking = [v for v in inbound if v.severity is Severity.BLOCK]
        if blocking:
            self._audit.emit(
                "agent.command_blocked",
                actor_id=agent.id,
                resource_type="agent_command",
                resource_id=session_id,
                details={
                    "command": command[:COMMAND_EXCERPT_LENGTH],
                    "violations": [v.to_dict() for v in inbound],
                },
                correlation_id=correlation_id,
            )
            logger.warning(
                "agent_executor.command_blocked",
                agent_id=agent.id,
                violations=[v.to_dict() for v in blocking],
            )
            return CommandResult(
                response=BLOCKED_MESSAGE,
                tool_call_count=0,
                turns_taken=0,
                state=LoopState.BLOCKED,
                correlation_id=correlation_id,
                session_id=session_id,
                duration_ms=_duration_ms(),
            )
        if inbound:
            logger.warning(
                "agent_executor.suspicious_command",
                agent_id=agent.id,
                violations=[v.to_dict() for v in inbound],
            )

        tools = self._registry.load_for(agent.capabilities)

        memory_context = ""
        if self._memory is not None:
            memories = await self._memory.retrieve(agent.id, command)
            memory_context = self._memory.format_for_prompt(memories)

        try:
            result = await self._loop.run(
                agent,
                command,
                tools,
                memory_context=memory_context,
                correlation_id=correlation_id,
            )
        except ProviderError as e:
            self._audit.emit(
                "agent.execute_failed",
                actor_id=agent.id,
                resource_type="agent_command",
                resource_id=session_id,
                details={
                    "command": command[:COMMAND_EXCERPT_LENGTH],
                    "error": str(e),
                    "tool_calls": e.tool_call_count,
                    "tool_names": e.tool_names,
                    "turns": e.turns_taken,
                },
                correlation_id=correlation_id,
            )
            raise

        # Every loop outcome is remembered; blocked commands returned above.
        if self._memory is not None:
            self._schedule_memory_store(self._memory, agent, command, result, session_id)

        self._audit.emit(
            "agent.execute",
            actor_id=agent.id,
            resource_type="agent_command",
            resource_id=session_id,
            details={
                "command": command[:COMMAND_EXCERPT_LENGTH],
                "tool_calls": result.tool_call_count,
                "tool_names": result.tool_names,
                "turns": result.turns_taken,
                "state": result.state.value,
                "warnings": [v.to_dict() for v in inbound + result.violations],
            },
            correlation_id=correlation_id,
        )

        duration_ms = _duration_ms()
        logger.info(
            "agent_executor.completed",
            agent_id=agent.id,
            state=result.state.value,
            turns=result.turns_taken,
            tool_calls=result.tool_call_count,
            duration_ms=duration_ms,
        )
        return CommandResult(
            response=result.text,
            tool_call_count=result.tool_call_count,
            turns_taken=result.turns_taken,
            state=result.state,
            correlation_id=correlation_id,
            tool_names=result.tool_names,
            session_id=session_id,
            duration_ms=duration_ms,
        )

    def _schedule_memory_store(
        self,
        memory: MemoryService,
        agent: Agent,
        command: str,
        result: LoopResult,
        session_id: Optional[str],
    ) -> None:
        task = asyncio.create_task(
            memory.store(
                agent.id,
                command,
                result.text,
                tool_names=result.tool_names,
                turn_count=result.turns_taken,
                session_id=session_id,
            ),
            name=f"memory-store-{agent.id}",
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("agent_executor.background_failed", task=task.get_name(), error=str(exc))

    async def drain(self) -> None:
        """Wait for background memory writes and last-seen updates."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._auth.drain()
        if self._memory is not None:
            await self._memory.drain()

    async def close(self) -> None:
        await self.drain()
        await self._audit.stop()
        for closer in reversed(self._closers):
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("agent_executor.close_failed", error=str(e))
        self._closers.clear()
        logger.info("agent_executor.closed")


async def create_agent_executor(
    config: AgentGateConfig,
    *,
    backend: Optional[ModelBackend] = None,
    delegate: Optional[ActionDelegate] = None,
    embed_fn: Optional[EmbedFn] = None,
) -> AgentExecutor:
    """Wire every subsystem from *config* and start the audit dispatcher."""
    if backend is None:
        backend = ClaudeBackend(config.claude)

    if config.tools.catalog_path is not None:
        registry = ToolRegistry.from_json(config.tools.catalog_path)
        registry.validate()
    else:
        registry = build_default_registry()

    audit_writer = SQLiteAuditWriter(config.audit.db_path)
    audit_writer.initialize()
    audit = AuditSink(audit_writer, max_queue_size=config.audit.max_queue_size)
    await audit.start()

    directory = SQLiteAgentDirectory(config.auth.agents_db_path, key_prefix=config.auth.key_prefix)
    directory.initialize()
    rate_store = SQLiteRateLimitStore(config.auth.rate_limit_db_path)
    rate_store.initialize()
    gate = AuthGate(
        directory,
        RateLimiter(rate_store, window_seconds=config.auth.rate_limit_window_seconds),
        audit,
        config.auth,
    )

    closers: list[Callable[[], Any]] = [audit_writer.close, directory.close, rate_store.close]

    if delegate is None:
        if config.tools.action_gateway_url:
            http_delegate = HttpActionDelegate(
                config.tools.action_gateway_url,
                token=config.tools.action_gateway_token or "",
                timeout=config.tools.default_timeout,
            )
            closers.append(http_delegate.aclose)
            delegate = http_delegate
        else:
            logger.warning("agent_executor.no_action_gateway")
            delegate = unconfigured_delegate
    executor = ToolExecutor(delegate, default_timeout=config.tools.default_timeout)

    memory: Optional[MemoryService] = None
    if config.memory.enabled:
        memory_store = SQLiteMemoryStore(config.memory.db_path)
        memory_store.initialize()
        closers.append(memory_store.close)
        if embed_fn is None:
            embedder = OpenAIEmbedder(config.memory)
            closers.append(embedder.aclose)
            embed_fn = embedder
        memory = MemoryService(
            embed_fn,
            memory_store,
            top_k=config.memory.top_k,
            threshold=config.memory.similarity_threshold,
            max_summary_length=config.memory.max_summary_length,
            max_excerpt_length=config.memory.max_excerpt_length,
        )

    safety = SafetyFilter(config.safety)
    loop = ConversationLoop(
        backend,
        executor,
        safety,
        audit,
        max_turns=config.loop.max_turns,
        timeout_seconds=config.loop.execution_timeout_seconds,
        system_prompt=config.loop.system_prompt,
    )

    agent_executor = AgentExecutor(gate, registry, memory, loop, safety, audit)
    for closer in closers:
        agent_executor.add_closer(closer)
    logger.info(
        "agent_executor.ready",
        tools=registry.count,
        memory=memory is not None,
        max_turns=config.loop.max_turns,
    )
    return agent_executor
