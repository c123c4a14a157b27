"""Agent provisioning commands — create, list, suspend, activate, rotate."""

from __future__ import annotations

import json as json_mod

import click

from agentgate.cli.formatters import build_table, format_timestamp, get_console, state_indicator
from agentgate.tools.capabilities import KNOWN_CAPABILITIES


def _open_directory(ctx: click.Context):  # noqa: ANN202
    from agentgate.auth.directory import SQLiteAgentDirectory
    from agentgate.cli.app import load_config

    config = load_config(ctx)
    directory = SQLiteAgentDirectory(config.auth.agents_db_path, key_prefix=config.auth.key_prefix)
    directory.initialize()
    return directory


@click.group("agents")
def agents_group() -> None:
    """Manage agents and their credentials."""
    pass


@agents_group.command("create")
@click.argument("name")
@click.option("--type", "agent_type", type=click.Choice(["autonomous", "supervised", "tool"]),
              default="autonomous", show_default=True)
@click.option("--capability", "capabilities", multiple=True,
              type=click.Choice(sorted(KNOWN_CAPABILITIES)), help="Repeat for each capability")
@click.option("--rpm", type=int, default=60, show_default=True, help="Requests per rate-limit window")
@click.option("--allow-destructive", is_flag=True, help="Permit destructive actions")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def agents_create(
    ctx: click.Context,
    name: str,
    agent_type: str,
    capabilities: tuple[str, ...],
    rpm: int,
    allow_destructive: bool,
    json_output: bool,
) -> None:
    """Create agent NAME and print its credential (shown once)."""
    directory = _open_directory(ctx)
    try:
        agent, credential = directory.create_agent(
            name,
            agent_type=agent_type,
            capabilities=capabilities,
            rate_limit_rpm=rpm,
            allow_destructive=allow_destructive,
        )
    finally:
        directory.close()

    if json_output:
        click.echo(json_mod.dumps({"id": agent.id, "name": agent.name, "credential": credential}, indent=2))
        return
    click.echo(f"Created agent {agent.name} ({agent.id})")
    click.echo(f"Credential: {credential}")
    click.echo("Store it now; it cannot be shown again.")


@agents_group.command("list")
@click.option("--status", type=click.Choice(["active", "inactive", "suspended"]), default=None)
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def agents_list(ctx: click.Context, status: str | None, json_output: bool) -> None:
    """List agents."""
    directory = _open_directory(ctx)
    try:
        agents = directory.list_agents(status)
    finally:
        directory.close()

    if json_output:
        click.echo(json_mod.dumps([
            {
                "id": a.id,
                "name": a.name,
                "type": a.type.value,
                "status": a.status.value,
                "capabilities": list(a.capabilities),
                "rate_limit_rpm": a.rate_limit_rpm,
                "allow_destructive": a.allow_destructive,
                "last_seen_at": a.last_seen_at,
            }
            for a in agents
        ], indent=2))
        return
    if not agents:
        click.echo("No agents.")
        return
    rows = [
        [
            state_indicator(a.status.value) + a.status.value,
            a.name,
            a.id,
            a.type.value,
            ", ".join(a.capabilities) or "-",
            a.rate_limit_rpm,
            "yes" if a.allow_destructive else "no",
            format_timestamp(a.last_seen_at),
        ]
        for a in agents
    ]
    get_console(no_color=ctx.obj.get("no_color", False)).print(build_table(
        "Agents",
        ["Status", "Name", "ID", "Type", "Capabilities", "RPM", "Destructive", "Last seen"],
        rows,
    ))


def _set_status(ctx: click.Context, agent_id: str, status: str) -> None:
    directory = _open_directory(ctx)
    try:
        changed = directory.set_status(agent_id, status)
    finally:
        directory.close()
    if not changed:
        raise click.ClickException(f"Unknown agent: {agent_id}")
    click.echo(f"Agent {agent_id} is now {status}.")


@agents_group.command("suspend")
@click.argument("agent_id")
@click.pass_context
def agents_suspend(ctx: click.Context, agent_id: str) -> None:
    """Suspend AGENT_ID; its credential stops working immediately."""
    _set_status(ctx, agent_id, "suspended")


@agents_group.command("activate")
@click.argument("agent_id")
@click.pass_context
def agents_activate(ctx: click.Context, agent_id: str) -> None:
    """Re-activate AGENT_ID."""
    _set_status(ctx, agent_id, "active")


@agents_group.command("rotate")
@click.argument("agent_id")
@click.pass_context
def agents_rotate(ctx: click.Context, agent_id: str) -> None:
    """Issue a new credential for AGENT_ID, revoking the old one."""
    directory = _open_directory(ctx)
    try:
        credential = directory.rotate_credential(agent_id)
    except KeyError:
        raise click.ClickException(f"Unknown agent: {agent_id}")
    finally:
        directory.close()
    click.echo(f"Credential: {credential}")
