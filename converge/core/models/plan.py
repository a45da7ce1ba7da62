"""
Plan models — what the reconciler decided to do.

A Plan is produced fresh for every reconciliation and never mutated
afterwards: it is either executed or thrown away. Entries are stored in
topological order and each entry lists the entry ids it must wait for.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from converge.core.models.resource import NamedOutput, ResourceSpec
from converge.core.models.state import ResourceState


class PlanAction(StrEnum):
    """What the executor does for an entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


def entry_id(action: PlanAction | str, address: str) -> str:
    """Entry ids are unique because an address appears at most once per action."""
    return f"{PlanAction(action).value}:{address}"


class PlanEntry(BaseModel):
    """A single step of a plan."""

    model_config = ConfigDict(frozen=True)

    action: PlanAction
    address: str
    kind: str
    name: str

    spec: ResourceSpec | None = None       # None for deletes
    prior: ResourceState | None = None     # None for creates of new resources

    changed: tuple[str, ...] = ()
    replacement: bool = False
    drift: tuple[str, ...] = ()
    remote_gone: bool = False              # refresh found the resource already deleted

    depends_on: tuple[str, ...] = ()       # entry ids this entry waits for
    requires: tuple[str, ...] = ()         # resource addresses recorded in state

    @property
    def id(self) -> str:
        return entry_id(self.action, self.address)

    @property
    def is_change(self) -> bool:
        return self.action != PlanAction.NOOP

    def describe(self) -> str:
        """One-line human summary (used in CLI output and logs)."""
        label = self.action.value
        if self.replacement:
            label = f"{label} (replace)"
        detail = f" [{', '.join(self.changed)}]" if self.changed else ""
        return f"{label} {self.address}{detail}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "address": self.address,
            "replacement": self.replacement,
            "changed": list(self.changed),
            "drift": list(self.drift),
            "remote_gone": self.remote_gone,
            "depends_on": list(self.depends_on),
        }


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Plan(BaseModel):
    """Ordered, immutable set of plan entries."""

    model_config = ConfigDict(frozen=True)

    operation_id: str = ""
    created_at: str = Field(default_factory=_now_iso)
    lineage: str = ""
    state_serial: int = 0
    entries: tuple[PlanEntry, ...] = ()
    outputs: tuple[NamedOutput, ...] = ()

    @property
    def changes(self) -> list[PlanEntry]:
        """Entries that touch a provider (everything except noop)."""
        return [e for e in self.entries if e.is_change]

    @property
    def is_empty(self) -> bool:
        """True when the plan converges nothing: all entries are noop."""
        return not self.changes

    def get(self, eid: str) -> PlanEntry | None:
        for entry in self.entries:
            if entry.id == eid:
                return entry
        return None

    def entries_for(self, address: str) -> list[PlanEntry]:
        return [e for e in self.entries if e.address == address]

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in PlanAction}
        for entry in self.entries:
            counts[entry.action.value] += 1
        counts["replace"] = sum(
            1 for e in self.entries
            if e.replacement and e.action == PlanAction.CREATE
        )
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "created_at": self.created_at,
            "state_serial": self.state_serial,
            "summary": self.summary(),
            "entries": [e.to_dict() for e in self.entries],
        }
