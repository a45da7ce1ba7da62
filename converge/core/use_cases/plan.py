"""
Plan use case — compute what an apply would change, without changing it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from converge.adapters.registry import ProviderRegistry
from converge.core.config.loader import ConfigError
from converge.core.engine.errors import ConvergeError
from converge.core.engine.executor import generate_operation_id
from converge.core.engine.graph import ResourceGraph
from converge.core.engine.reconciler import compute_plan
from converge.core.models.plan import Plan
from converge.core.models.project import Project
from converge.core.persistence.state_file import StateStore
from converge.core.use_cases.workspace import (
    Workspace,
    build_registry,
    load_desired,
    open_workspace,
    refresh_remote,
)

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """A computed plan, or why one could not be computed."""

    plan: Plan | None = None
    graph: ResourceGraph | None = None
    project: Project | None = None
    project_root: Path | None = None
    refreshed: bool = False
    error: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            if self.details:
                result["details"] = self.details
            return result

        result["project_name"] = self.project.name if self.project else ""
        result["project_root"] = str(self.project_root)
        result["refreshed"] = self.refreshed
        if self.plan:
            result["plan"] = self.plan.to_dict()
        return result


def prepare_plan(
    ws: Workspace,
    store: StateStore,
    registry: ProviderRegistry,
    *,
    destroy: bool = False,
    refresh: bool = False,
) -> tuple[ResourceGraph, Plan]:
    """Load the desired graph and reconcile it against ``store``.

    Raises:
        ConvergeError: Invalid documents, stale/corrupt state, or a
            provider read failing during refresh.
    """
    graph = load_desired(ws, destroy=destroy)
    snapshot = store.snapshot()
    remote = refresh_remote(registry, snapshot) if refresh else None
    plan = compute_plan(graph, snapshot, remote=remote, operation_id=generate_operation_id())
    return graph, plan


def run_plan(
    config_path: Path | None = None,
    *,
    destroy: bool = False,
    refresh: bool | None = None,
    mock_mode: bool = False,
    registry: ProviderRegistry | None = None,
) -> PlanResult:
    """Compute the plan for the project.

    Args:
        config_path: Optional explicit path to converge.yml.
        destroy: Plan the deletion of everything tracked.
        refresh: Read remote state first (default: project setting).
        mock_mode: Route provider reads to the in-memory mock.
        registry: Optional pre-configured provider registry.

    Returns:
        PlanResult with the plan, or an error.
    """
    result = PlanResult()

    try:
        ws = open_workspace(config_path)
    except ConfigError as e:
        result.error = str(e)
        result.error_kind = "ConfigError"
        return result

    result.project = ws.project
    result.project_root = ws.root
    do_refresh = ws.project.refresh if refresh is None else refresh

    try:
        store = ws.open_store()
        if registry is None:
            registry = build_registry(ws, mock_mode=mock_mode, snapshot=store.snapshot())
        result.graph, result.plan = prepare_plan(
            ws, store, registry, destroy=destroy, refresh=do_refresh
        )
        result.refreshed = do_refresh
    except ConvergeError as e:
        result.error = str(e)
        result.error_kind = e.kind
        result.details = error_details(e)

    return result


def error_details(e: ConvergeError) -> dict[str, Any]:
    details: dict[str, Any] = {}
    for attr in ("cycle", "source", "target", "detail"):
        value = getattr(e, attr, None)
        if value:
            details[attr] = value
    return details
