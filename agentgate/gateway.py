"""
Gateway Server — HTTP front door for agent commands.

aiohttp server exposing the AgentExecutor. The gateway owns no business
logic: it parses the request, hands it to the executor, and maps the outcome
to a status code.

Routes:
  POST /execute  — run one command (credential in the X-Agent-Key header)
  GET  /health   — health check (unauthenticated)

Every response carries an X-Correlation-Id header. Error bodies never
include tracebacks.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

import structlog
from aiohttp import web

from agentgate.agent import AgentExecutor, correlation_id_from
from agentgate.api.claude import ProviderError
from agentgate.audit import new_correlation_id
from agentgate.auth.gate import AuthError
from agentgate.auth.ratelimit import rate_limit_headers
from agentgate.config import GatewayConfig
from agentgate.types import CommandRequest

logger = structlog.get_logger(__name__)

_CORRELATION_KEY = "agentgate.correlation_id"


class GatewayServer:
    """HTTP gateway server.

    Lifecycle: create → start() → (serve requests) → stop()
    """

    def __init__(self, executor: AgentExecutor, config: Optional[GatewayConfig] = None) -> None:
        self._executor = executor
        self._config = config or GatewayConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = 0.0
        self._requests = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(
            middlewares=[self._correlation_middleware],
            client_max_size=self._config.max_body_bytes,
        )
        app.router.add_post("/execute", self._handle_execute)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        host = host or self._config.host
        port = self._config.port if port is None else port
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        self._started_at = time.monotonic()
        logger.info("gateway.started", host=host, port=port)

    async def stop(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("gateway.stopped", requests=self._requests)

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    @web.middleware
    async def _correlation_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        correlation_id = correlation_id_from(request.headers) or new_correlation_id()
        request[_CORRELATION_KEY] = correlation_id
        start = time.monotonic()
        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                exc.headers["X-Correlation-Id"] = correlation_id
                raise
            except Exception:
                logger.error("gateway.unhandled_error", path=request.path, exc_info=True)
                response = web.json_response(
                    {"error": "internal_error", "correlationId": correlation_id},
                    status=500,
                )
            response.headers["X-Correlation-Id"] = correlation_id
            logger.info(
                "gateway.request",
                method=request.method,
                path=request.path,
                status=response.status,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            return response

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return web.json_response({
            "status": "ok",
            "uptime": round(uptime, 1),
            "requests": self._requests,
        })

    async def _handle_execute(self, request: web.Request) -> web.Response:
        self._requests += 1
        correlation_id = request[_CORRELATION_KEY]

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            return _validation_error("Request body must be valid JSON", correlation_id)

        try:
            command_request = parse_command_request(body)
        except ValueError as e:
            return _validation_error(str(e), correlation_id)

        try:
            result = await self._executor.execute(
                request.headers,
                command_request.command,
                session_id=command_request.session_id,
                correlation_id=correlation_id,
            )
        except AuthError as e:
            headers = rate_limit_headers(e.rate_limit) if e.rate_limit is not None else None
            payload = e.to_dict()
            payload["correlationId"] = correlation_id
            return web.json_response(payload, status=e.status, headers=headers)
        except ProviderError:
            return web.json_response(
                {"error": "model_backend_error", "correlationId": correlation_id},
                status=502,
            )

        return web.json_response(result.to_dict())


def parse_command_request(body: Any) -> CommandRequest:
    """Validate an /execute body. Raises ValueError carrying the message for the caller."""
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    command = body.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ValueError("command is required and must be a non-empty string")
    session_id = body.get("session_id")
    if session_id is not None and not isinstance(session_id, str):
        raise ValueError("session_id must be a string")
    return CommandRequest(command=command, session_id=session_id)


def _validation_error(message: str, correlation_id: str) -> web.Response:
    return web.json_response(
        {"error": "validation_error", "message": message, "correlationId": correlation_id},
        status=400,
    )
