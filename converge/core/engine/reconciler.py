"""
State reconciler — desired graph vs. last-known state → Plan.

Classification per resource:

    no prior state                      → create
    prior state, attributes equal       → noop
    changed attributes, all mutable     → update
    any changed attribute forces new    → delete + create (replacement)
    prior state, no desired spec        → delete

References are resolved against prior-state outputs when the target is
kept (noop/update). When the target is created or replaced its outputs
are not known until apply, so the referencing attribute counts as
changed.

Entry ordering:
    - create/update/noop of A waits for the apply entry of each dependency
      of A, and for A's own delete when A is being replaced.
    - delete of X waits for the deletes of everything that depended on X
      (recorded in state), so dependents are removed first.
"""

from __future__ import annotations

import logging
from typing import Any

from converge.core.engine.graph import ResourceGraph, topological_order
from converge.core.models.plan import Plan, PlanAction, PlanEntry, entry_id
from converge.core.models.resource import Reference
from converge.core.models.state import ResourceState, StateSnapshot

logger = logging.getLogger(__name__)


class _Unknown:
    """Placeholder for a value only known after apply."""

    def __repr__(self) -> str:
        return "(known after apply)"


UNKNOWN = _Unknown()


def _contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(_contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(_contains_unknown(v) for v in value)
    return False


def _normalize(value: Any) -> Any:
    """Tuples and lists compare equal once serialized; make them so here too."""
    if isinstance(value, tuple):
        return [_normalize(v) for v in value]
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    return value


class _PlanTimeValues:
    """Resolves references using prior-state outputs, or UNKNOWN."""

    def __init__(self, snapshot: StateSnapshot):
        self._snapshot = snapshot
        self._pending: set[str] = set()

    def mark_pending(self, address: str) -> None:
        self._pending.add(address)

    def resolve(self, value: Any) -> Any:
        if isinstance(value, Reference):
            if value.address in self._pending:
                return UNKNOWN
            prior = self._snapshot.get(value.address)
            if prior is None:
                return UNKNOWN
            return prior.all_outputs().get(value.output, UNKNOWN)
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.resolve(v) for v in value]
        return value


def diff_attributes(
    desired: dict[str, Any],
    baseline: dict[str, Any],
) -> list[str]:
    """Attribute names whose desired value differs from ``baseline``.

    Desired values containing UNKNOWN always count as changed. Attributes
    present in the baseline but no longer declared count as changed too.
    """
    changed: list[str] = []
    for key in sorted(set(desired) | set(baseline)):
        if key not in desired or key not in baseline:
            changed.append(key)
            continue
        value = desired[key]
        if _contains_unknown(value) or _normalize(value) != _normalize(baseline[key]):
            changed.append(key)
    return changed


def _detect_drift(
    prior: ResourceState,
    remote: dict[str, Any],
) -> tuple[list[str], dict[str, Any]]:
    """Compare recorded attributes with what the provider read back.

    Returns:
        (drifted attribute names, baseline to diff the desired spec against)
    """
    drift = [
        key for key in sorted(prior.attributes)
        if key in remote and _normalize(remote[key]) != _normalize(prior.attributes[key])
    ]
    baseline = dict(prior.attributes)
    for key in drift:
        baseline[key] = remote[key]
    return drift, baseline


def compute_plan(
    graph: ResourceGraph,
    snapshot: StateSnapshot,
    *,
    remote: dict[str, dict[str, Any] | None] | None = None,
    operation_id: str = "",
) -> Plan:
    """Compute the create/update/delete plan for ``graph`` against ``snapshot``.

    Args:
        graph: Validated desired graph.
        snapshot: Last-known state. Not modified.
        remote: Optional refresh results: address → attributes read back
            from the provider, or None if the resource no longer exists.
            Addresses missing from the mapping were not refreshed.
        operation_id: Identifier stamped on the plan.

    Returns:
        Immutable, topologically ordered Plan.
    """
    remote = remote or {}
    values = _PlanTimeValues(snapshot)

    apply_entries: dict[str, PlanEntry] = {}
    replace_deletes: dict[str, PlanEntry] = {}

    for address in graph.order:
        spec = graph.get(address)
        kind = graph.kind_of(address)
        prior = snapshot.get(address)
        deps = graph.dependencies_of(address)
        depends_on = [apply_entries[d].id for d in deps]

        common = {
            "address": address,
            "kind": spec.kind,
            "name": spec.name,
            "spec": spec,
            "requires": tuple(deps),
        }

        gone = address in remote and remote[address] is None
        if prior is None or gone:
            values.mark_pending(address)
            apply_entries[address] = PlanEntry(
                action=PlanAction.CREATE,
                prior=prior,
                drift=("gone",) if gone and prior is not None else (),
                depends_on=tuple(depends_on),
                **common,
            )
            continue

        drift: list[str] = []
        baseline = prior.attributes
        if remote.get(address) is not None:
            drift, baseline = _detect_drift(prior, remote[address])

        desired = values.resolve(spec.attributes)
        changed = diff_attributes(desired, baseline)

        if not changed:
            action = PlanAction.NOOP
            replacement = False
        elif any(kind.requires_replacement(key) for key in changed):
            action = PlanAction.CREATE
            replacement = True
        else:
            action = PlanAction.UPDATE
            replacement = False

        if replacement:
            values.mark_pending(address)
            delete = PlanEntry(
                action=PlanAction.DELETE,
                address=address,
                kind=prior.kind,
                name=prior.name,
                prior=prior,
                changed=tuple(changed),
                replacement=True,
                drift=tuple(drift),
            )
            replace_deletes[address] = delete
            depends_on.append(delete.id)

        apply_entries[address] = PlanEntry(
            action=action,
            prior=prior,
            changed=tuple(changed),
            replacement=replacement,
            drift=tuple(drift),
            depends_on=tuple(depends_on),
            **common,
        )

    orphan_deletes: dict[str, PlanEntry] = {}
    for address, prior in snapshot.resources.items():
        if address in graph:
            continue
        orphan_deletes[address] = PlanEntry(
            action=PlanAction.DELETE,
            address=address,
            kind=prior.kind,
            name=prior.name,
            prior=prior,
            remote_gone=address in remote and remote[address] is None,
        )

    deletes = {**orphan_deletes, **replace_deletes}
    deletes = {a: _with_delete_deps(e, deletes, snapshot) for a, e in deletes.items()}
    _wait_for_former_dependents(orphan_deletes, deletes, apply_entries, snapshot)

    # Natural order: orphan deletes in reverse state order, then per
    # resource in graph order its replacement delete followed by its apply.
    natural: list[PlanEntry] = [deletes[a] for a in reversed(list(orphan_deletes))]
    for address in graph.order:
        if address in replace_deletes:
            natural.append(deletes[address])
        natural.append(apply_entries[address])

    by_id = {e.id: e for e in natural}
    order = topological_order(
        [e.id for e in natural],
        {e.id: list(e.depends_on) for e in natural},
    )
    entries = tuple(by_id[eid] for eid in order)

    plan = Plan(
        operation_id=operation_id,
        lineage=snapshot.lineage,
        state_serial=snapshot.serial,
        entries=entries,
        outputs=tuple(graph.outputs),
    )
    logger.info("Plan computed: %s", _summary_line(plan))
    return plan


def _with_delete_deps(
    entry: PlanEntry,
    deletes: dict[str, PlanEntry],
    snapshot: StateSnapshot,
) -> PlanEntry:
    """Make ``entry`` wait for the deletes of everything that depended on it."""
    waits = [
        entry_id(PlanAction.DELETE, other)
        for other, state in snapshot.resources.items()
        if other != entry.address
        and other in deletes
        and entry.address in state.dependencies
    ]
    if not waits:
        return entry
    return entry.model_copy(update={"depends_on": tuple(entry.depends_on) + tuple(waits)})


def _wait_for_former_dependents(
    orphans: dict[str, PlanEntry],
    deletes: dict[str, PlanEntry],
    apply_entries: dict[str, PlanEntry],
    snapshot: StateSnapshot,
) -> None:
    """Make orphan deletes wait for kept resources that used to depend on them.

    A kept resource recorded as depending on an orphan is being moved off
    it by its own apply entry; the orphan must outlive that apply. Edges
    that would close a cycle are skipped. Updates ``deletes`` in place.
    """
    edges = {e.id: set(e.depends_on) for e in (*deletes.values(), *apply_entries.values())}
    for address in orphans:
        entry = deletes[address]
        waits = []
        for other, state in snapshot.resources.items():
            apply = apply_entries.get(other)
            if apply is None or other in deletes or address not in state.dependencies:
                continue
            if _reaches(apply.id, entry.id, edges):
                logger.warning(
                    "%s still in use by %s, which cannot finish first; deleting anyway",
                    address,
                    other,
                )
                continue
            waits.append(apply.id)
            edges[entry.id].add(apply.id)
        if waits:
            deletes[address] = entry.model_copy(
                update={"depends_on": tuple(entry.depends_on) + tuple(waits)}
            )


def _reaches(start: str, target: str, edges: dict[str, set[str]]) -> bool:
    seen: set[str] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(edges.get(node, ()))
    return False


def _summary_line(plan: Plan) -> str:
    s = plan.summary()
    return (
        f"{s['create']} to create, {s['update']} to update, "
        f"{s['delete']} to delete, {s['noop']} unchanged"
    )
