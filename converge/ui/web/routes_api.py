"""
API routes — read-only JSON endpoints.

All endpoints return JSON. Grouped under /api/ prefix. Errors come back
as ``{"error": ...}`` with a 4xx status.
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _config_path() -> Path | None:
    p = current_app.config.get("CONFIG_PATH")
    if p:
        return Path(p)
    from converge.core.config.loader import find_project_file

    return find_project_file(Path(current_app.config["PROJECT_ROOT"]))


def _flag(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes", "on")


# ── State ────────────────────────────────────────────────────────────


@api_bp.route("/state")
def api_state():  # type: ignore[no-untyped-def]
    """Tracked resources with attributes and outputs."""
    from converge.core.use_cases.state import list_resources

    result = list_resources(config_path=_config_path())
    if result.error:
        return jsonify(result.to_dict()), 404
    return jsonify(result.to_dict())


@api_bp.route("/state/<path:address>")
def api_state_resource(address: str):  # type: ignore[no-untyped-def]
    from converge.core.use_cases.state import show_resource

    result = show_resource(address, config_path=_config_path())
    if result.error:
        return jsonify(result.to_dict()), 404
    return jsonify(result.to_dict()["resources"][0])


# ── Outputs ──────────────────────────────────────────────────────────


@api_bp.route("/outputs")
def api_outputs():  # type: ignore[no-untyped-def]
    """Named outputs from the last apply."""
    from converge.core.use_cases.outputs import get_outputs

    result = get_outputs(config_path=_config_path(), name=request.args.get("name"))
    if result.error:
        return jsonify(result.to_dict()), 404
    return jsonify(result.to_dict())


# ── Plan ─────────────────────────────────────────────────────────────


@api_bp.route("/plan")
def api_plan():  # type: ignore[no-untyped-def]
    """Compute (never apply) the current plan.

    Query: ``destroy=1`` plans a teardown, ``refresh=1|0`` overrides the
    project setting.
    """
    from converge.core.use_cases.plan import run_plan

    result = run_plan(
        config_path=_config_path(),
        destroy=bool(_flag("destroy")),
        refresh=_flag("refresh"),
        mock_mode=current_app.config.get("MOCK_MODE", False),
    )
    if result.error:
        status = 404 if result.error_kind == "ConfigError" else 422
        return jsonify(result.to_dict()), status
    return jsonify(result.to_dict())


# ── Runs ─────────────────────────────────────────────────────────────


@api_bp.route("/runs")
def api_runs():  # type: ignore[no-untyped-def]
    """Recent apply/destroy runs from the ledger."""
    from converge.core.use_cases.state import recent_runs

    try:
        n = int(request.args.get("n", 20))
    except ValueError:
        return jsonify({"error": "n must be an integer"}), 400

    result = recent_runs(config_path=_config_path(), n=max(n, 1))
    if result.error:
        return jsonify(result.to_dict()), 404
    return jsonify(result.to_dict())
