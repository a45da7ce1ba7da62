"""
State use cases — inspect and edit tracked resources, read run history.

``remove_resource`` only forgets a resource; it does not delete it
remotely. The next plan treats it as unmanaged (and, if it is still
declared, as something to create).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from converge.core.config.loader import ConfigError
from converge.core.engine.errors import StateError
from converge.core.models.state import ResourceState
from converge.core.use_cases.workspace import open_workspace

logger = logging.getLogger(__name__)


@dataclass
class StateResult:
    """Tracked resources (all, or one) plus snapshot metadata."""

    resources: list[ResourceState] = field(default_factory=list)
    serial: int = 0
    lineage: str = ""
    removed: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "serial": self.serial,
            "lineage": self.lineage,
            "removed": self.removed,
            "resources": [
                {"address": r.address, **r.model_dump(mode="json")} for r in self.resources
            ],
        }


def list_resources(config_path: Path | None = None) -> StateResult:
    result = StateResult()
    try:
        ws = open_workspace(config_path)
        snapshot = ws.open_store().snapshot()
    except (ConfigError, StateError) as e:
        result.error = str(e)
        return result

    result.serial = snapshot.serial
    result.lineage = snapshot.lineage
    result.resources = list(snapshot.resources.values())
    return result


def show_resource(address: str, config_path: Path | None = None) -> StateResult:
    result = list_resources(config_path)
    if result.error:
        return result
    result.resources = [r for r in result.resources if r.address == address]
    if not result.resources:
        result.error = f"{address} is not tracked in state"
    return result


def remove_resource(address: str, config_path: Path | None = None) -> StateResult:
    """Stop tracking ``address`` without touching the remote resource."""
    result = StateResult()
    try:
        ws = open_workspace(config_path)
        store = ws.open_store()
        existing = store.get(address)
        if existing is None:
            result.error = f"{address} is not tracked in state"
            return result
        store.remove(address)
    except (ConfigError, StateError) as e:
        result.error = str(e)
        return result

    logger.warning("Removed %s from state; the remote resource was not deleted", address)
    result.removed = True
    result.resources = [existing]
    result.serial = store.serial
    result.lineage = store.lineage
    return result


@dataclass
class RunsResult:
    runs: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"runs": self.runs}


def recent_runs(config_path: Path | None = None, n: int = 20) -> RunsResult:
    """Most recent ledger entries, newest last."""
    result = RunsResult()
    try:
        ws = open_workspace(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.runs = [r.model_dump(mode="json") for r in ws.ledger.read_recent(n)]
    return result
