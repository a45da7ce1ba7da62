"""
Workspace — the shared setup every use case starts from.

Finds and loads converge.yml, resolves the kind catalog, locates the state
file and run ledger, builds the provider registry, and loads the desired
resource graph. Errors surface as ConfigError / ConvergeError; the use
cases turn them into result objects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from converge.adapters.base import OperationContext
from converge.adapters.mock import MockProvider
from converge.adapters.registry import ProviderRegistry
from converge.core.config.loader import (
    PROJECT_CONFIG_FILE,
    ConfigError,
    find_project_file,
    load_project,
    project_root,
    resolve_kinds,
)
from converge.core.config.spec_loader import load_specs
from converge.core.engine.graph import ResourceGraph, build_graph
from converge.core.models.kind import ResourceKind
from converge.core.models.project import Project
from converge.core.models.state import StateSnapshot
from converge.core.persistence.audit import DEFAULT_LEDGER_FILE, RunLedger
from converge.core.persistence.state_file import StateStore, default_state_path

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """A loaded project and where its files live."""

    project: Project
    config_path: Path
    root: Path
    kinds: dict[str, ResourceKind]

    @property
    def state_path(self) -> Path:
        return default_state_path(self.root, self.project.state_path)

    @property
    def ledger(self) -> RunLedger:
        return RunLedger(self.root / DEFAULT_LEDGER_FILE)

    @property
    def spec_paths(self) -> list[Path]:
        return [self.root / p for p in self.project.specs]

    def open_store(self) -> StateStore:
        return StateStore(self.state_path)


def open_workspace(config_path: Path | None = None) -> Workspace:
    """Load the project config and resolve its paths.

    Raises:
        ConfigError: No config found, or it does not validate.
    """
    if config_path is None:
        config_path = find_project_file()
    if config_path is None:
        raise ConfigError(f"No {PROJECT_CONFIG_FILE} found.")

    project = load_project(config_path)
    return Workspace(
        project=project,
        config_path=config_path,
        root=project_root(config_path),
        kinds=resolve_kinds(project),
    )


def load_desired(ws: Workspace, destroy: bool = False) -> ResourceGraph:
    """Load and validate the desired resource graph.

    ``destroy`` yields an empty graph, so every tracked resource is planned
    for deletion.

    Raises:
        SpecError, CycleError, UnknownReferenceError
    """
    if destroy:
        return build_graph([], ws.kinds)
    bundle = load_specs(ws.spec_paths)
    return build_graph(bundle.resources, ws.kinds, bundle.outputs)


def build_registry(
    ws: Workspace,
    mock_mode: bool = False,
    snapshot: StateSnapshot | None = None,
) -> ProviderRegistry:
    """Registry for the project's provider.

    In mock mode (``--mock`` or ``provider: mock``) every kind goes to an
    in-memory MockProvider seeded from ``snapshot``, so plans and applies
    agree with what earlier mock runs recorded.
    """
    mock = MockProvider(kinds=ws.kinds)
    if snapshot is not None:
        mock.seed(snapshot)

    if mock_mode or ws.project.provider == "mock":
        logger.info("Using mock provider")
        return ProviderRegistry(ws.kinds, mock_provider=mock)

    from converge.adapters.aws import AwsProvider

    registry = ProviderRegistry(ws.kinds)
    registry.register(AwsProvider(region=ws.project.region))
    registry.register(mock)
    return registry


def refresh_remote(
    registry: ProviderRegistry,
    snapshot: StateSnapshot,
) -> dict[str, dict[str, Any] | None]:
    """Read every tracked resource back from its provider.

    Returns address → remote attributes, or None when the resource is gone.

    Raises:
        ProviderError: A read failed; planning on partial knowledge is
            not attempted.
    """
    remote: dict[str, dict[str, Any] | None] = {}
    for address, resource in snapshot.resources.items():
        ctx = OperationContext(
            address=address,
            kind=resource.kind,
            name=resource.name,
            attributes=dict(resource.attributes),
            prior=resource,
        )
        result = registry.dispatch("read", ctx)
        remote[address] = result.attributes if result is not None else None
        if result is None:
            logger.warning("%s no longer exists remotely", address)
    logger.info("Refreshed %d resources", len(remote))
    return remote
