"""
State file persistence — atomic, versioned storage for StateSnapshot.

State is stored as JSON (default .state/converge.json). Writes are atomic
(write to temp file, then rename) so a crash mid-write never leaves a
half-written state behind. Every write bumps the snapshot serial.

Unlike most caches, a corrupt state file is NOT silently replaced with a
fresh one: that would make every managed resource look unmanaged and the
next apply would try to create them all again.
"""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from converge.core.engine.errors import StateError
from converge.core.models.state import ResourceState, StateSnapshot

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = ".state/converge.json"


def default_state_path(project_root: Path, state_path: str = DEFAULT_STATE_PATH) -> Path:
    """Resolve the state path for a project (relative paths are under the root)."""
    path = Path(state_path)
    return path if path.is_absolute() else project_root / path


def load_state(path: Path) -> StateSnapshot:
    """Load a state snapshot from a JSON file.

    Returns:
        StateSnapshot. If the file doesn't exist, returns a fresh snapshot.

    Raises:
        StateError: If the file exists but cannot be read or parsed.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return StateSnapshot()

    try:
        raw = path.read_text(encoding="utf-8")
        snapshot = StateSnapshot.model_validate(json.loads(raw))
    except OSError as e:
        raise StateError(f"Cannot read state file {path}: {e}") from e
    except (json.JSONDecodeError, ValidationError) as e:
        raise StateError(f"Corrupt state file {path}: {e}") from e

    logger.debug(
        "Loaded state from %s (serial=%d, %d resources)",
        path,
        snapshot.serial,
        len(snapshot.resources),
    )
    return snapshot


def save_state(snapshot: StateSnapshot, path: Path) -> None:
    """Write a snapshot atomically (temp file in the same directory, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)

    data = snapshot.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".converge_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise
    logger.debug("State saved to %s (serial=%d)", path, snapshot.serial)


class StateStore:
    """The single mutable shared object of a run.

    Each write touches exactly one resource entry and is persisted before
    the call returns. The lock only serializes the file write itself;
    entries for unrelated resources never conflict, and the plan's
    dependency order keeps related ones apart.

    Args:
        path: Backing JSON file. None keeps state in memory only.
        snapshot: Initial snapshot when no file is used.
    """

    def __init__(self, path: Path | None = None, snapshot: StateSnapshot | None = None):
        self._path = path
        self._lock = threading.Lock()
        if snapshot is not None:
            self._current = snapshot.model_copy(deep=True)
        elif path is not None:
            self._current = load_state(path)
        else:
            self._current = StateSnapshot()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def serial(self) -> int:
        with self._lock:
            return self._current.serial

    @property
    def lineage(self) -> str:
        with self._lock:
            return self._current.lineage

    def snapshot(self) -> StateSnapshot:
        """An isolated copy; mutating it does not affect the store."""
        with self._lock:
            return self._current.model_copy(deep=True)

    def get(self, address: str) -> ResourceState | None:
        with self._lock:
            rs = self._current.resources.get(address)
            return rs.model_copy(deep=True) if rs else None

    def put(self, resource: ResourceState) -> None:
        """Record the observed state of one resource."""
        with self._lock:
            prior = self._current.resources.get(resource.address)
            if prior is not None:
                resource = resource.model_copy(update={"created_at": prior.created_at})
            self._current.resources[resource.address] = resource
            self._commit()
        logger.debug("State recorded: %s", resource.address)

    def remove(self, address: str) -> bool:
        """Forget one resource. Returns False if it was not tracked."""
        with self._lock:
            if address not in self._current.resources:
                return False
            del self._current.resources[address]
            self._commit()
        logger.debug("State removed: %s", address)
        return True

    def set_outputs(self, outputs: dict[str, Any]) -> None:
        """Replace the named outputs recorded by the last apply."""
        with self._lock:
            self._current.outputs = dict(outputs)
            self._commit()

    def _commit(self) -> None:
        self._current.touch()
        if self._path is not None:
            save_state(self._current, self._path)
