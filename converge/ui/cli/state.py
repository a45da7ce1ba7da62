"""
CLI commands for inspecting and editing the state file.

Thin wrappers over ``converge.core.use_cases.state``.
"""

from __future__ import annotations

import json
import sys

import click


@click.group("state")
def state() -> None:
    """State — list, show and forget tracked resources."""


@state.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List tracked resources."""
    from converge.core.use_cases.state import list_resources

    result = list_resources(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"\n📦 State (serial {result.serial})", fg="cyan", bold=True)
    if not result.resources:
        click.echo("   No resources tracked")
    for resource in result.resources:
        click.echo(f"   • {resource.address}  → {resource.resource_id}")
    click.echo()


@state.command("show")
@click.argument("address")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, address: str, as_json: bool) -> None:
    """Show one tracked resource."""
    from converge.core.use_cases.state import show_resource

    result = show_resource(address, config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    resource = result.resources[0]
    click.secho(f"\n{resource.address}", fg="cyan", bold=True)
    click.echo(f"   id:      {resource.resource_id}")
    click.echo(f"   created: {resource.created_at}")
    click.echo(f"   updated: {resource.updated_at}")
    if resource.dependencies:
        click.echo(f"   depends: {', '.join(resource.dependencies)}")

    click.secho("   Attributes:", bold=True)
    for key, value in sorted(resource.attributes.items()):
        click.echo(f"     {key} = {json.dumps(value)}")
    if resource.outputs:
        click.secho("   Outputs:", bold=True)
        for key, value in sorted(resource.outputs.items()):
            click.echo(f"     {key} = {json.dumps(value)}")
    click.echo()


@state.command("rm")
@click.argument("address")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def rm(ctx: click.Context, address: str, yes: bool, as_json: bool) -> None:
    """Stop tracking a resource. The remote resource is NOT deleted."""
    from converge.core.use_cases.state import remove_resource

    if not yes and not as_json:
        click.confirm(
            f"Forget {address}? It will keep running but no longer be managed",
            abort=True,
        )

    result = remove_resource(address, config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Removed {address} from state", fg="green")
