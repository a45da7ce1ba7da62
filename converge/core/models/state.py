"""
StateSnapshot — the last-known remote reality.

The snapshot is versioned: every write bumps ``serial``, and ``lineage``
identifies the chain of snapshots a state file belongs to. It is passed
explicitly into each reconciliation call; nothing reads it from a global.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from converge.core.models.resource import make_address


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ResourceState(BaseModel):
    """Observed attributes and outputs of one applied resource."""

    kind: str
    name: str
    resource_id: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    def all_outputs(self) -> dict[str, Any]:
        """Declared outputs plus the implicit ``id``."""
        return {"id": self.resource_id, **self.outputs}


class StateSnapshot(BaseModel):
    """Root state document — serialized to .state/converge.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Versioning ───────────────────────────────────────────────
    lineage: str = Field(default_factory=lambda: uuid.uuid4().hex)
    serial: int = 0
    updated_at: str = Field(default_factory=_now_iso)

    # ── Resources, keyed by "kind.name" ──────────────────────────
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    # ── Named outputs from the last apply ────────────────────────
    outputs: dict[str, Any] = Field(default_factory=dict)

    def get(self, address: str) -> ResourceState | None:
        return self.resources.get(address)

    def addresses(self) -> list[str]:
        return list(self.resources.keys())

    def touch(self) -> None:
        self.serial += 1
        self.updated_at = _now_iso()
