"""
Web API server — Flask app factory.

Creates and configures the Flask application serving the read-only JSON
API: state, outputs, plan and run history. Nothing here applies changes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask

logger = logging.getLogger(__name__)


def create_app(
    project_root: Path | None = None,
    config_path: Path | None = None,
    mock_mode: bool = False,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        project_root: Root directory of the project.
        config_path: Path to converge.yml.
        mock_mode: Route /api/plan refreshes to the mock provider.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)

    app.config["PROJECT_ROOT"] = str(project_root or Path.cwd())
    app.config["CONFIG_PATH"] = str(config_path) if config_path else None
    app.config["MOCK_MODE"] = mock_mode
    app.json.sort_keys = False

    from converge.ui.web.routes_api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    logger.info("Web API app created (root=%s)", project_root)
    return app


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server."""
    logger.info("Starting web API on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False)
