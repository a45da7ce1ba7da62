"""
Outputs use case — named outputs and kubeconfig export from recorded state.

Reads state only; never calls a provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from converge.core.config.loader import ConfigError
from converge.core.engine.errors import StateError
from converge.core.services.kubeconfig import (
    KubeconfigError,
    dump_kubeconfig,
    kubeconfig_from_state,
)
from converge.core.use_cases.workspace import open_workspace


@dataclass
class OutputsResult:
    """Named outputs recorded by the last apply."""

    outputs: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"outputs": self.outputs}


def get_outputs(config_path: Path | None = None, name: str | None = None) -> OutputsResult:
    """All named outputs, or just ``name``."""
    result = OutputsResult()
    try:
        ws = open_workspace(config_path)
        snapshot = ws.open_store().snapshot()
    except (ConfigError, StateError) as e:
        result.error = str(e)
        return result

    if name is None:
        result.outputs = dict(snapshot.outputs)
    elif name in snapshot.outputs:
        result.outputs = {name: snapshot.outputs[name]}
    else:
        result.error = f"Output '{name}' not found. Run apply first, or check the name."
    return result


@dataclass
class KubeconfigResult:
    address: str = ""
    document: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def text(self) -> str:
        return dump_kubeconfig(self.document) if self.document else ""

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"address": self.address, "kubeconfig": self.document}


def export_kubeconfig(
    address: str,
    config_path: Path | None = None,
    alias: str | None = None,
    profile: str | None = None,
) -> KubeconfigResult:
    """Kubeconfig for a tracked EKS cluster, using the project region."""
    result = KubeconfigResult(address=address)
    try:
        ws = open_workspace(config_path)
        snapshot = ws.open_store().snapshot()
        result.document = kubeconfig_from_state(
            snapshot, address, ws.project.region, alias=alias, profile=profile
        )
    except (ConfigError, StateError, KubeconfigError) as e:
        result.error = str(e)
    return result
