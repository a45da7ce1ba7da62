"""
Configuration loader — reads converge.yml into the Project model.

This is the primary entry point for loading project settings. It reads
YAML, validates against the Pydantic schema, and resolves the resource
kind catalog (built-ins overlaid with project declarations).
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from converge.core.data import builtin_kinds
from converge.core.models.kind import ResourceKind
from converge.core.models.project import Project

logger = logging.getLogger(__name__)

# Default config filename
PROJECT_CONFIG_FILE = "converge.yml"


class ConfigError(Exception):
    """Raised when project configuration is invalid or missing."""


def find_project_file(start_dir: Path | None = None) -> Path | None:
    """Search for converge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to converge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PROJECT_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_project(path: Path | None = None) -> Project:
    """Load and validate project configuration.

    Args:
        path: Explicit path to converge.yml. If None, searches upward.

    Returns:
        Validated Project model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_project_file()

    if path is None:
        raise ConfigError(
            f"No {PROJECT_CONFIG_FILE} found. "
            "Create one in the project root, or specify --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading project config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Settings may sit under a "project" key or at the top level
    project_data = data.get("project", data)

    try:
        project = Project.model_validate(project_data)
    except Exception as e:
        raise ConfigError(f"Invalid project configuration: {e}") from e

    logger.info(
        "Loaded project '%s' (provider=%s, parallelism=%d)",
        project.name,
        project.provider,
        project.parallelism,
    )
    return project


def project_root(config_path: Path) -> Path:
    """Get the project root directory from a config file path."""
    return config_path.parent.resolve()


def resolve_kinds(project: Project | None = None) -> dict[str, ResourceKind]:
    """Built-in kinds overlaid with the project's own declarations.

    A project kind with the same name as a built-in replaces it wholesale.
    """
    kinds = builtin_kinds()
    if project is not None:
        for kind in project.kinds:
            if kind.name in kinds:
                logger.debug("Project overrides built-in kind '%s'", kind.name)
            kinds[kind.name] = kind
    return kinds
