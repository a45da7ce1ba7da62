"""
converge — CLI entrypoint.

Usage:
    converge --help
    converge validate
    converge plan
    converge apply --auto-approve
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from converge import __version__
from converge.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to converge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """converge — declarative infrastructure convergence."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("CONVERGE_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("CONVERGE_LOG_FILE"),
        log_file_level=os.environ.get("CONVERGE_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(ctx: click.Context, as_json: bool) -> None:
    """Validate converge.yml and the resource documents."""
    from converge.core.use_cases.validate import validate_project

    result = validate_project(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if not result.ok:
        click.secho(f"❌ {result.error_kind}: {result.error}", fg="red")
        sys.exit(1)

    graph = result.graph
    assert graph is not None  # guaranteed when ok
    click.secho("✅ Configuration is valid", fg="green", bold=True)
    click.echo(f"   Project:   {result.project_name}")
    click.echo(f"   Resources: {len(graph)}")
    click.echo(f"   Edges:     {len(graph.edges)}")
    click.echo(f"   Outputs:   {len(graph.outputs)}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--destroy", is_flag=True, help="Plan the deletion of everything tracked.")
@click.option(
    "--refresh/--no-refresh",
    default=None,
    help="Read remote state before planning (default: project setting).",
)
@click.option("--mock", is_flag=True, help="Use the in-memory mock provider.")
@click.pass_context
def plan(
    ctx: click.Context,
    as_json: bool,
    destroy: bool,
    refresh: bool | None,
    mock: bool,
) -> None:
    """Show what apply would change."""
    from converge.core.use_cases.plan import run_plan
    from converge.ui.cli.render import print_plan

    result = run_plan(
        config_path=ctx.obj.get("config_path"),
        destroy=destroy,
        refresh=refresh,
        mock_mode=mock,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error_kind}: {result.error}", fg="red")
        sys.exit(1)

    assert result.plan is not None and result.project is not None
    label = "destroy plan" if destroy else "plan"
    click.secho(f"\n📝 {result.project.name} — {label}", fg="cyan", bold=True)
    if result.refreshed:
        click.echo("   (remote state refreshed)")
    click.echo()
    print_plan(result.plan, show_unchanged=ctx.obj.get("verbose", False))
    click.echo()


def _converge(
    ctx: click.Context,
    *,
    destroy: bool,
    as_json: bool,
    auto_approve: bool,
    parallelism: int | None,
    dry_run: bool,
    mock: bool,
    refresh: bool | None,
    continue_on_error: bool | None,
) -> None:
    """Shared body of ``apply`` and ``destroy``."""
    from converge.core.use_cases.apply import run_apply
    from converge.ui.cli.render import STATUS_COLORS, print_plan, print_report

    if as_json and not auto_approve and not dry_run:
        raise click.UsageError("--json needs --auto-approve (or --dry-run)")

    def confirm(plan) -> bool:  # type: ignore[no-untyped-def]
        click.echo()
        print_plan(plan)
        click.echo()
        question = "Destroy all tracked resources?" if destroy else "Apply these changes?"
        return click.confirm(question, default=False)

    # First Ctrl-C: stop scheduling, let in-flight calls finish
    cancel_event = threading.Event()
    previous = None
    if threading.current_thread() is threading.main_thread():
        def _on_interrupt(signum, frame):  # type: ignore[no-untyped-def]
            if cancel_event.is_set():
                raise KeyboardInterrupt
            click.secho("\n⚠️  Cancelling — waiting for in-flight changes", fg="yellow", err=True)
            cancel_event.set()

        previous = signal.signal(signal.SIGINT, _on_interrupt)

    try:
        result = run_apply(
            config_path=ctx.obj.get("config_path"),
            destroy=destroy,
            dry_run=dry_run,
            mock_mode=mock,
            parallelism=parallelism,
            refresh=refresh,
            continue_on_error=continue_on_error,
            cancel_event=cancel_event,
            confirm=None if auto_approve else confirm,
        )
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error_kind}: {result.error}", fg="red")
        sys.exit(1)

    if result.declined:
        click.secho("Cancelled — nothing was changed.", fg="yellow")
        return

    assert result.plan is not None and result.report is not None
    assert result.project is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(
        f"\n⚡ {mode_label}{result.command} — {result.project.name}",
        fg="cyan",
        bold=True,
    )
    if result.plan.is_empty:
        print_plan(result.plan)
    else:
        click.echo(f"   Entries: {len(result.plan.changes)}")
        click.echo()
        print_report(result.report, verbose=ctx.obj.get("verbose", False))

    if result.report.outputs and not destroy:
        click.echo()
        click.secho("   Outputs:", bold=True)
        for name, value in result.report.outputs.items():
            click.echo(f"     {name} = {json.dumps(value)}")

    click.echo()
    if not result.ok:
        click.secho(
            f"   Run finished with status '{result.report.status}'",
            fg=STATUS_COLORS.get(result.report.status, "white"),
        )
        sys.exit(1)


def _apply_options(fn):  # type: ignore[no-untyped-def]
    options = [
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
        click.option("--auto-approve", "-y", is_flag=True, help="Skip the confirmation prompt."),
        click.option(
            "--parallelism", "-p", type=click.IntRange(min=1), default=None,
            help="Max concurrent provider calls (default: project setting).",
        ),
        click.option("--dry-run", is_flag=True, help="Plan but don't call providers."),
        click.option("--mock", is_flag=True, help="Use the in-memory mock provider."),
        click.option(
            "--refresh/--no-refresh", default=None,
            help="Read remote state before planning (default: project setting).",
        ),
        click.option(
            "--continue-on-error/--stop-on-error", default=None,
            help="Keep applying independent branches after a failure.",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@cli.command()
@_apply_options
@click.pass_context
def apply(ctx: click.Context, **options) -> None:  # type: ignore[no-untyped-def]
    """Converge infrastructure onto the resource documents.

    Examples:

        converge apply

        converge apply --auto-approve --parallelism 8

        converge apply --dry-run --mock
    """
    _converge(ctx, destroy=False, **options)


@cli.command()
@_apply_options
@click.pass_context
def destroy(ctx: click.Context, **options) -> None:  # type: ignore[no-untyped-def]
    """Delete every tracked resource, dependents first."""
    _converge(ctx, destroy=True, **options)


@cli.command()
@click.argument("name", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--raw", is_flag=True, help="Print a single value without quoting.")
@click.pass_context
def output(ctx: click.Context, name: str | None, as_json: bool, raw: bool) -> None:
    """Show named outputs from the last apply."""
    from converge.core.use_cases.outputs import get_outputs

    result = get_outputs(config_path=ctx.obj.get("config_path"), name=name)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if name and raw:
        value = result.outputs[name]
        click.echo(value if isinstance(value, str) else json.dumps(value))
        return

    if not result.outputs:
        click.echo("No outputs recorded.")
        return
    for key, value in result.outputs.items():
        click.echo(f"{key} = {json.dumps(value)}")


@cli.command()
@click.argument("address")
@click.option("--alias", default=None, help="Context name (default: cluster name).")
@click.option("--profile", default=None, help="AWS profile passed to 'aws eks get-token'.")
@click.option(
    "--output-file", "-o", type=click.Path(dir_okay=False), default=None,
    help="Write to a file instead of stdout.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def kubeconfig(
    ctx: click.Context,
    address: str,
    alias: str | None,
    profile: str | None,
    output_file: str | None,
    as_json: bool,
) -> None:
    """Print a kubeconfig for a tracked EKS cluster.

    Example:

        converge kubeconfig aws_eks_cluster.main > ~/.kube/main.yaml
    """
    from converge.core.use_cases.outputs import export_kubeconfig

    result = export_kubeconfig(
        address, config_path=ctx.obj.get("config_path"), alias=alias, profile=profile
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if output_file:
        path = Path(output_file)
        path.write_text(result.text, encoding="utf-8")
        path.chmod(0o600)
        click.secho(f"✅ Kubeconfig written to {path}", fg="green")
        return
    click.echo(result.text, nl=False)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def graph(ctx: click.Context, as_json: bool) -> None:
    """Show the dependency graph in apply order."""
    from converge.core.use_cases.validate import validate_project

    result = validate_project(config_path=ctx.obj.get("config_path"))

    if result.error:
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            click.secho(f"❌ {result.error_kind}: {result.error}", fg="red")
        sys.exit(1)

    g = result.graph
    assert g is not None
    if as_json:
        click.echo(json.dumps(g.to_dict(), indent=2))
        return

    click.secho(f"\n🔗 {result.project_name} — {len(g)} resources", fg="cyan", bold=True)
    for address in g.order:
        deps = g.dependencies_of(address)
        suffix = f"  ← {', '.join(deps)}" if deps else ""
        click.echo(f"   • {address}{suffix}")
    click.echo()


@cli.command()
@click.option("--limit", "-n", default=20, type=int, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent apply/destroy runs."""
    from converge.core.use_cases.state import recent_runs
    from converge.ui.cli.render import STATUS_COLORS

    result = recent_runs(config_path=ctx.obj.get("config_path"), n=limit)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.runs:
        click.echo("No runs recorded.")
        return
    for run in result.runs:
        click.echo(f"   {run['timestamp'][:19]}  {run['command']:<8}", nl=False)
        click.secho(f" {run['status']:<9}", fg=STATUS_COLORS.get(run["status"], "white"), nl=False)
        click.echo(f" {run['applied']} applied, {run['failed']} failed  ({run['operation_id']})")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", default=8000, type=int, help="Port number.")
@click.option("--mock", is_flag=True, help="Use the mock provider for /api/plan refreshes.")
@click.pass_context
def web(ctx: click.Context, host: str, port: int, mock: bool) -> None:
    """Start the read-only JSON API."""
    from converge.ui.web.server import create_app, run_server

    config_path: Path | None = ctx.obj.get("config_path")
    if config_path is None:
        from converge.core.config.loader import find_project_file

        config_path = find_project_file()

    project_root = config_path.parent.resolve() if config_path else Path.cwd()

    app = create_app(
        project_root=project_root,
        config_path=config_path,
        mock_mode=mock,
    )

    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ converge — API", bold=True)
    click.echo(f"   Listening: http://{host}:{port}/api")
    click.echo(f"   Project:   {project_root}")
    if mock:
        click.secho("   Mode: mock", fg="yellow")
    click.echo()

    run_server(app, host=host, port=port, debug=debug)


# ── Register sub-command groups from converge/ui/cli/ ──────────────

from converge.ui.cli.state import state  # noqa: E402

cli.add_command(state)


if __name__ == "__main__":
    cli()
