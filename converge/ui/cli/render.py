"""
Human-readable rendering of plans and execution reports.
"""

from __future__ import annotations

import click

from converge.core.engine.executor import (
    APPLIED,
    CANCELLED,
    DEPENDENCY_FAILED,
    SKIPPED,
    UNCHANGED,
    ExecutionReport,
)
from converge.core.models.plan import Plan, PlanAction, PlanEntry

_ACTION_STYLE = {
    PlanAction.CREATE: ("+", "green"),
    PlanAction.UPDATE: ("~", "yellow"),
    PlanAction.DELETE: ("-", "red"),
    PlanAction.NOOP: ("=", "white"),
}

STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red", "cancelled": "yellow"}


def plan_summary_line(plan: Plan) -> str:
    s = plan.summary()
    line = f"{s['create']} to create, {s['update']} to update, {s['delete']} to delete"
    if s["replace"]:
        line += f" ({s['replace']} replacements)"
    return line


def print_entry(entry: PlanEntry) -> None:
    marker, color = _ACTION_STYLE[entry.action]
    if entry.replacement:
        marker, color = "±", "magenta"
    click.secho(f"   {marker} {entry.address}", fg=color, nl=False)

    notes = []
    if entry.replacement:
        notes.append("replace" if entry.action == PlanAction.CREATE else "replace: delete old")
    if entry.changed:
        notes.append(", ".join(entry.changed))
    if entry.drift:
        notes.append(f"drift: {', '.join(entry.drift)}")
    if entry.remote_gone:
        notes.append("already gone")
    click.echo(f"  ({'; '.join(notes)})" if notes else "")


def print_plan(plan: Plan, show_unchanged: bool = False) -> None:
    """Print the plan entries in execution order, then a summary line."""
    if plan.is_empty:
        click.secho("   ✅ No changes. Infrastructure matches the desired state.", fg="green")
        return

    for entry in plan.entries:
        if entry.action == PlanAction.NOOP and not show_unchanged:
            continue
        print_entry(entry)

    click.echo()
    click.secho(f"   Plan: {plan_summary_line(plan)}", bold=True)


_OUTCOME_STYLE = {
    APPLIED: ("✓", "green"),
    UNCHANGED: ("=", "white"),
    SKIPPED: ("⊘", "yellow"),
    CANCELLED: ("⊘", "yellow"),
    DEPENDENCY_FAILED: ("⊘", "red"),
}


def print_report(report: ExecutionReport, verbose: bool = False) -> None:
    """Per-entry outcomes followed by a colored result line."""
    for r in report.results:
        if r.outcome == UNCHANGED and not verbose:
            continue
        marker, color = _OUTCOME_STYLE.get(r.outcome, ("✗", "red"))
        click.secho(f"   {marker} {r.entry_id}", fg=color, nl=False)

        extra = []
        if r.duration_ms:
            extra.append(f"{r.duration_ms}ms")
        if r.attempts > 1:
            extra.append(f"{r.attempts} attempts")
        if r.outcome not in (APPLIED, UNCHANGED):
            extra.append(r.outcome)
        click.echo(f" ({', '.join(extra)})" if extra else "")

        if r.error:
            for line in r.error.split("\n")[:5]:
                click.echo(f"     │ {line}")

    click.echo()
    color = STATUS_COLORS.get(report.status, "white")
    label = "[dry-run] " if report.dry_run else ""
    click.secho(
        f"   {label}Result: {report.status} — {report.applied} applied, "
        f"{report.failed} failed, {report.skipped} skipped",
        fg=color,
        bold=True,
    )
    if report.aborted:
        click.secho("   ⚠️  Stopped scheduling after the first failure", fg="yellow")
