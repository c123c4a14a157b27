"""CLI application — Click-based command hierarchy for AgentGate.

The main CLI group, the ``serve`` and ``run`` commands, and registration of
the subcommand groups.
"""

from __future__ import annotations

import asyncio
import functools
import json as json_mod
import signal
import sys
from typing import Any

import click
from rich.panel import Panel

from agentgate.cli.formatters import get_console, state_indicator


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group()
@click.option("--data-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for the SQLite files (overrides per-file settings)")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, data_dir: str | None, no_color: bool) -> None:
    """AgentGate - authenticated, capability-gated agent execution."""
    from agentgate.main import configure_logging

    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["no_color"] = no_color


def load_config(ctx: click.Context):  # noqa: ANN201
    from pathlib import Path

    from agentgate.config import AgentGateConfig

    data_dir = ctx.obj.get("data_dir") if ctx.obj else None
    return AgentGateConfig(data_dir=Path(data_dir) if data_dir else None)


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default from AGENTGATE_HOST)")
@click.option("--port", type=int, default=None, help="Port (default from AGENTGATE_PORT)")
@click.pass_context
@async_cmd
async def serve_cmd(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP gateway until interrupted."""
    from agentgate.agent import create_agent_executor
    from agentgate.gateway import GatewayServer

    config = load_config(ctx)
    executor = await create_agent_executor(config)
    server = GatewayServer(executor, config.gateway)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows
            pass

    await server.start(host, port)
    click.echo(f"AgentGate listening on {host or config.gateway.host}:{port or config.gateway.port}")
    try:
        await stop.wait()
    finally:
        await server.stop()
        await executor.close()


@cli.command("run")
@click.argument("command")
@click.option("--key", envvar="AGENTGATE_AGENT_KEY", required=True,
              help="Agent credential (or AGENTGATE_AGENT_KEY)")
@click.option("--session", "session_id", default=None, help="Session id to attach")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def run_cmd(
    ctx: click.Context,
    command: str,
    key: str,
    session_id: str | None,
    json_output: bool,
) -> None:
    """Execute one COMMAND locally as the agent owning --key."""
    from agentgate.agent import create_agent_executor
    from agentgate.api.claude import ClaudeBackendInitError, ProviderError
    from agentgate.auth.gate import AuthError

    config = load_config(ctx)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    try:
        executor = await create_agent_executor(config)
    except ClaudeBackendInitError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)

    exit_code = 0
    try:
        result = await executor.execute({config.auth.header_name: key}, command, session_id=session_id)
    except AuthError as e:
        console.print(f"[red]Authentication failed ({e.status}):[/red] {e.message}")
        exit_code = 1
    except ProviderError as e:
        console.print(f"[red]Model backend error:[/red] {e}")
        exit_code = 2
    else:
        if json_output:
            click.echo(json_mod.dumps(result.to_dict(), indent=2))
        else:
            title = state_indicator(result.state.value)
            title.append(f"{result.state.value}  turns={result.turns_taken} tools={result.tool_call_count}")
            console.print(Panel(result.response, title=title, subtitle=result.correlation_id))
    finally:
        await executor.close()
    if exit_code:
        sys.exit(exit_code)


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    from agentgate.cli.agents import agents_group
    from agentgate.cli.tools_cmd import tools_group

    cli.add_command(agents_group)
    cli.add_command(tools_group)


_register_subcommands()
