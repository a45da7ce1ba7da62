"""
Validate use case — check config and documents without touching state.

Runs the graph builder only: malformed documents, unknown kinds, missing
required attributes, bad references and cycles are all reported here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from converge.core.config.loader import ConfigError
from converge.core.engine.errors import ConvergeError
from converge.core.engine.graph import ResourceGraph
from converge.core.use_cases.plan import error_details
from converge.core.use_cases.workspace import load_desired, open_workspace


@dataclass
class ValidateResult:
    graph: ResourceGraph | None = None
    project_name: str = ""
    error: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error:
            return {
                "valid": False,
                "error": self.error,
                "error_kind": self.error_kind,
                "details": self.details,
            }
        graph = self.graph
        return {
            "valid": True,
            "project_name": self.project_name,
            "resources": len(graph) if graph else 0,
            "edges": len(graph.edges) if graph else 0,
            "outputs": len(graph.outputs) if graph else 0,
            "order": list(graph.order) if graph else [],
        }


def validate_project(config_path: Path | None = None) -> ValidateResult:
    result = ValidateResult()
    try:
        ws = open_workspace(config_path)
        result.project_name = ws.project.name
        result.graph = load_desired(ws)
    except ConfigError as e:
        result.error = str(e)
        result.error_kind = "ConfigError"
    except ConvergeError as e:
        result.error = str(e)
        result.error_kind = e.kind
        result.details = error_details(e)
    return result
