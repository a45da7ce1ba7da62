"""
Apply use case — converge remote reality onto the desired graph.

The full vertical slice: load config and documents, build the graph,
reconcile against state (optionally refreshed), confirm, execute with
bounded parallelism, persist state per resource, record the run.
``destroy=True`` runs the same pipeline against an empty desired graph.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from converge.adapters.registry import ProviderRegistry
from converge.core.config.loader import ConfigError
from converge.core.engine.errors import ConvergeError
from converge.core.engine.executor import ExecutionReport, execute_plan
from converge.core.models.plan import Plan
from converge.core.models.project import Project
from converge.core.persistence.audit import RunFailure, RunRecord
from converge.core.reliability.retry import RetryPolicy
from converge.core.use_cases.plan import error_details, prepare_plan
from converge.core.use_cases.workspace import Workspace, build_registry, open_workspace

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of an apply or destroy."""

    command: str = "apply"
    plan: Plan | None = None
    report: ExecutionReport | None = None
    project: Project | None = None
    project_root: Path | None = None
    declined: bool = False
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        if self.error:
            return False
        return self.report is None or self.report.all_ok

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result

        result["command"] = self.command
        result["project_name"] = self.project.name if self.project else ""
        result["project_root"] = str(self.project_root)
        result["declined"] = self.declined
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_apply(
    config_path: Path | None = None,
    *,
    destroy: bool = False,
    dry_run: bool = False,
    mock_mode: bool = False,
    parallelism: int | None = None,
    refresh: bool | None = None,
    continue_on_error: bool | None = None,
    cancel_event: threading.Event | None = None,
    registry: ProviderRegistry | None = None,
    retry_policy: RetryPolicy | None = None,
    confirm: Callable[[Plan], bool] | None = None,
) -> ApplyResult:
    """Plan and execute.

    Args:
        config_path: Optional explicit path to converge.yml.
        destroy: Delete every tracked resource instead.
        dry_run: Plan and walk the entries without calling providers.
        mock_mode: Route every kind to the in-memory mock provider.
        parallelism: Max concurrent provider calls (default: project setting).
        refresh: Read remote state before planning (default: project setting).
        continue_on_error: Keep applying independent branches after a failure.
        cancel_event: Set it to stop scheduling new entries.
        registry: Optional pre-configured provider registry.
        retry_policy: Override the project's retry settings.
        confirm: Called with the plan when it has changes; returning False
            stops before anything is applied.

    Returns:
        ApplyResult with plan and execution report.
    """
    command = "destroy" if destroy else "apply"
    result = ApplyResult(command=command)

    try:
        ws = open_workspace(config_path)
    except ConfigError as e:
        result.error = str(e)
        result.error_kind = "ConfigError"
        return result

    result.project = ws.project
    result.project_root = ws.root
    project = ws.project

    try:
        store = ws.open_store()
        if registry is None:
            registry = build_registry(ws, mock_mode=mock_mode, snapshot=store.snapshot())
        _, plan = prepare_plan(
            ws,
            store,
            registry,
            destroy=destroy,
            refresh=project.refresh if refresh is None else refresh,
        )
    except ConvergeError as e:
        result.error = str(e)
        result.error_kind = e.kind
        details = error_details(e)
        if details.get("detail") and details["detail"] != result.error:
            result.error = f"{result.error} ({details['detail']})"
        return result

    result.plan = plan

    if plan.changes and not dry_run and confirm is not None and not confirm(plan):
        logger.info("Apply declined by user")
        result.declined = True
        return result

    start = time.monotonic()
    try:
        report = execute_plan(
            plan,
            registry,
            store,
            kinds=ws.kinds,
            parallelism=parallelism or project.parallelism,
            retry_policy=retry_policy or RetryPolicy.from_settings(project.retry),
            cancel_event=cancel_event,
            continue_on_error=(
                project.continue_on_error if continue_on_error is None else continue_on_error
            ),
            dry_run=dry_run,
        )
    except ConvergeError as e:
        result.error = str(e)
        result.error_kind = e.kind
        return result

    result.report = report
    if not dry_run:
        _record_run(ws, command, plan, report, store.serial, start, mock_mode or registry.mock_mode)
    return result


def _record_run(
    ws: Workspace,
    command: str,
    plan: Plan,
    report: ExecutionReport,
    state_serial: int,
    start: float,
    mock_mode: bool,
) -> None:
    record = RunRecord(
        operation_id=report.operation_id,
        command=command,
        status=report.status,
        aborted=report.aborted,
        state_serial=state_serial,
        planned=plan.summary(),
        applied=report.applied,
        failed=report.failed,
        skipped=report.skipped,
        duration_ms=int((time.monotonic() - start) * 1000),
        failures=[
            RunFailure(entry=r.entry_id, error_kind=r.error_kind, error=r.error)
            for r in report.failures()
        ],
        context={"mock": mock_mode, "project": ws.project.name},
    )
    ws.ledger.write(record)
