"""
Built-in resource kind catalog.

Loads ``kinds.yml`` from this package once and caches it for the process
lifetime. Project-declared kinds are merged on top by the config loader.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

import yaml

from converge.core.models.kind import ResourceKind

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent


@lru_cache(maxsize=1)
def _load_catalog() -> tuple[ResourceKind, ...]:
    path = _DATA_DIR / "kinds.yml"
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    kinds = tuple(ResourceKind.model_validate(k) for k in data.get("kinds", []))
    logger.debug("Loaded %d built-in resource kinds", len(kinds))
    return kinds


def builtin_kinds() -> dict[str, ResourceKind]:
    """Fresh name → kind mapping of the built-in catalog."""
    return {k.name: k.model_copy(deep=True) for k in _load_catalog()}
