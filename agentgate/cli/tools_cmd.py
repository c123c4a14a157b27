"""Tool catalog commands — validate and list."""

from __future__ import annotations

import json as json_mod

import click

from agentgate.cli.formatters import build_table, get_console


def _load_registry(ctx: click.Context):  # noqa: ANN202
    from agentgate.cli.app import load_config
    from agentgate.tools.catalog import default_tool_definitions
    from agentgate.tools.registry import ToolRegistry

    config = load_config(ctx)
    if config.tools.catalog_path is not None:
        return ToolRegistry.from_json(config.tools.catalog_path), str(config.tools.catalog_path)
    return ToolRegistry(default_tool_definitions()), "built-in catalog"


@click.group("tools")
def tools_group() -> None:
    """Inspect the tool catalog."""
    pass


@tools_group.command("validate")
@click.pass_context
def tools_validate(ctx: click.Context) -> None:
    """Check every tool's action against the capability table."""
    from agentgate.tools.registry import UnmappedActionError

    registry, source = _load_registry(ctx)
    try:
        registry.validate()
    except UnmappedActionError as e:
        click.echo(f"{source}: {len(e.actions)} unmapped action(s):", err=True)
        for action in e.actions:
            click.echo(f"  - {action}", err=True)
        ctx.exit(1)
        return
    click.echo(f"{source}: {registry.count} tools OK")


@tools_group.command("list")
@click.option("--capability", default=None, help="Only tools visible with this capability")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def tools_list(ctx: click.Context, capability: str | None, json_output: bool) -> None:
    """List catalog tools."""
    registry, source = _load_registry(ctx)
    tools = registry.list_tools()
    if capability:
        tools = [t for t in tools if t["capability"] == capability]
    if json_output:
        click.echo(json_mod.dumps(tools, indent=2))
        return
    rows = [[t["name"], t["capability"], t["action"], "yes" if t["active"] else "no"] for t in tools]
    get_console(no_color=ctx.obj.get("no_color", False)).print(
        build_table(f"Tools ({source})", ["Name", "Capability", "Action", "Active"], rows)
    )
