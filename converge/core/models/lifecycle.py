"""
Per-resource lifecycle within one reconciliation pass.

    pending → planned → applying → ready | failed

``planned`` may also go straight to ``ready`` (noop entries publish prior
outputs without touching a provider) or to ``failed`` (a dependency
failed). ``failed`` and ``ready`` are terminal for the run; the next pass
starts everyone over at ``pending``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum

from converge.core.engine.errors import InvalidTransitionError


class ResourceStatus(StrEnum):
    PENDING = "pending"
    PLANNED = "planned"
    APPLYING = "applying"
    READY = "ready"
    FAILED = "failed"


_TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    ResourceStatus.PENDING: frozenset({ResourceStatus.PLANNED}),
    ResourceStatus.PLANNED: frozenset({
        ResourceStatus.APPLYING,
        ResourceStatus.READY,
        ResourceStatus.FAILED,
    }),
    ResourceStatus.APPLYING: frozenset({
        ResourceStatus.READY,
        ResourceStatus.FAILED,
    }),
    ResourceStatus.READY: frozenset(),
    ResourceStatus.FAILED: frozenset(),
}


@dataclass
class _Track:
    status: ResourceStatus = ResourceStatus.PENDING
    history: list[tuple[ResourceStatus, float]] = field(default_factory=list)


class Lifecycle:
    """Thread-safe status tracker for every entry in a run.

    Timestamps come from ``clock`` (monotonic by default) so that ordering
    properties can be asserted: a dependent's ``applying`` time is never
    earlier than its dependency's ``ready`` time.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._tracks: dict[str, _Track] = {}

    def register(self, key: str) -> None:
        with self._lock:
            track = _Track()
            track.history.append((ResourceStatus.PENDING, self._clock()))
            self._tracks[key] = track

    def transition(self, key: str, new: ResourceStatus) -> float:
        """Move ``key`` to ``new`` and return the timestamp of the move."""
        with self._lock:
            track = self._tracks.get(key)
            if track is None:
                raise InvalidTransitionError(f"Unknown lifecycle key '{key}'")
            if new not in _TRANSITIONS[track.status]:
                raise InvalidTransitionError(
                    f"{key}: {track.status.value} → {new.value} is not allowed"
                )
            now = self._clock()
            track.status = new
            track.history.append((new, now))
            return now

    def status(self, key: str) -> ResourceStatus:
        with self._lock:
            return self._tracks[key].status

    def entered_at(self, key: str, status: ResourceStatus) -> float | None:
        """When ``key`` entered ``status``, or None if it never did."""
        with self._lock:
            for s, ts in self._tracks[key].history:
                if s == status:
                    return ts
        return None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._tracks.keys())
