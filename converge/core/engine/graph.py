"""
Resource graph builder — specs in, validated DAG out.

Edges come from two places: every Reference embedded in a resource's
attributes (the resource depends on the reference target) and explicit
``depends_on`` declarations. The builder fails fast, before anything
touches a provider:

    - SpecError              duplicate address, unknown kind, missing required attribute
    - UnknownReferenceError  reference to a missing resource or undeclared output
    - CycleError             the edges do not form a DAG
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field

from converge.core.engine.errors import CycleError, SpecError, UnknownReferenceError
from converge.core.models.kind import ResourceKind
from converge.core.models.resource import (
    DependencyEdge,
    NamedOutput,
    Reference,
    ResourceSpec,
)

logger = logging.getLogger(__name__)


@dataclass
class ResourceGraph:
    """Validated dependency graph of desired resources."""

    specs: dict[str, ResourceSpec] = field(default_factory=dict)
    kinds: dict[str, ResourceKind] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)
    outputs: list[NamedOutput] = field(default_factory=list)
    order: list[str] = field(default_factory=list)

    _deps: dict[str, list[str]] = field(default_factory=dict, repr=False)
    _rdeps: dict[str, list[str]] = field(default_factory=dict, repr=False)

    def __contains__(self, address: str) -> bool:
        return address in self.specs

    def __len__(self) -> int:
        return len(self.specs)

    def get(self, address: str) -> ResourceSpec:
        return self.specs[address]

    def kind_of(self, address: str) -> ResourceKind:
        return self.kinds[self.specs[address].kind]

    def dependencies_of(self, address: str) -> list[str]:
        """Direct dependencies (what ``address`` waits for)."""
        return list(self._deps.get(address, []))

    def dependents_of(self, address: str) -> list[str]:
        """Direct dependents (what waits for ``address``)."""
        return list(self._rdeps.get(address, []))

    def transitive_dependents(self, address: str) -> set[str]:
        seen: set[str] = set()
        stack = list(self._rdeps.get(address, []))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._rdeps.get(node, []))
        return seen

    def to_dict(self) -> dict:
        return {
            "order": list(self.order),
            "edges": [e.model_dump() for e in self.edges],
        }


def _check_reference(
    source: str,
    ref: Reference,
    specs: dict[str, ResourceSpec],
    kinds: dict[str, ResourceKind],
) -> None:
    target = specs.get(ref.address)
    if target is None:
        raise UnknownReferenceError(source, str(ref), "no such resource")
    kind = kinds[target.kind]
    if not kind.has_output(ref.output):
        raise UnknownReferenceError(
            source,
            str(ref),
            f"kind '{kind.name}' declares outputs {['id', *kind.outputs]}",
        )


def _find_cycle(nodes: set[str], deps: dict[str, list[str]]) -> list[str]:
    """Return one cycle among ``nodes`` as a closed path (first == last)."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in nodes}
    path: list[str] = []

    def visit(node: str) -> list[str] | None:
        color[node] = GREY
        path.append(node)
        for dep in deps.get(node, []):
            if dep not in color:
                continue
            if color[dep] == GREY:
                return path[path.index(dep):] + [dep]
            if color[dep] == WHITE:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        color[node] = BLACK
        return None

    for start in sorted(nodes):
        if color[start] == WHITE:
            found = visit(start)
            if found:
                return found
    return sorted(nodes)


def topological_order(
    nodes: list[str],
    deps: dict[str, list[str]],
) -> list[str]:
    """Kahn's algorithm; ties are broken by position in ``nodes``.

    Raises:
        CycleError: If some nodes can never be scheduled.
    """
    position = {n: i for i, n in enumerate(nodes)}
    remaining = {n: len(set(deps.get(n, []))) for n in nodes}
    rdeps: dict[str, list[str]] = {n: [] for n in nodes}
    for node in nodes:
        for dep in set(deps.get(node, [])):
            rdeps[dep].append(node)

    heap = [(position[n], n) for n, count in remaining.items() if count == 0]
    heapq.heapify(heap)
    order: list[str] = []

    while heap:
        _, node = heapq.heappop(heap)
        order.append(node)
        for succ in rdeps[node]:
            remaining[succ] -= 1
            if remaining[succ] == 0:
                heapq.heappush(heap, (position[succ], succ))

    if len(order) < len(nodes):
        stuck = {n for n in nodes if n not in set(order)}
        raise CycleError(_find_cycle(stuck, deps))

    return order


def build_graph(
    specs: list[ResourceSpec],
    kinds: dict[str, ResourceKind],
    outputs: list[NamedOutput] | None = None,
) -> ResourceGraph:
    """Build and validate the dependency graph for a set of specs.

    Args:
        specs: Desired resources, in declaration order.
        kinds: Known resource kinds by name.
        outputs: Named top-level outputs to validate against the graph.

    Returns:
        ResourceGraph with a deterministic topological ``order``.
    """
    by_address: dict[str, ResourceSpec] = {}
    for spec in specs:
        if spec.address in by_address:
            raise SpecError(f"Duplicate resource: {spec.address}")
        kind = kinds.get(spec.kind)
        if kind is None:
            raise SpecError(f"{spec.address}: unknown kind '{spec.kind}'")
        missing = [a for a in kind.required if a not in spec.attributes]
        if missing:
            raise SpecError(f"{spec.address}: missing required attributes {missing}")
        by_address[spec.address] = spec

    edges: list[DependencyEdge] = []
    deps: dict[str, list[str]] = {a: [] for a in by_address}

    def add_edge(dependent: str, dependency: str, reason: str) -> None:
        if dependency == dependent:
            raise CycleError([dependent, dependent])
        if dependency not in deps[dependent]:
            deps[dependent].append(dependency)
            edges.append(
                DependencyEdge(dependent=dependent, dependency=dependency, reason=reason)
            )

    for address, spec in by_address.items():
        for ref in spec.references():
            _check_reference(address, ref, by_address, kinds)
            add_edge(address, ref.address, "reference")
        for dep in spec.depends_on:
            if dep not in by_address:
                raise UnknownReferenceError(address, dep, "depends_on target does not exist")
            add_edge(address, dep, "explicit")

    named = list(outputs or [])
    seen_outputs: set[str] = set()
    for output in named:
        if output.name in seen_outputs:
            raise SpecError(f"Duplicate output: {output.name}")
        seen_outputs.add(output.name)
        _check_reference(f"output.{output.name}", output.value, by_address, kinds)

    order = topological_order(list(by_address), deps)

    rdeps: dict[str, list[str]] = {a: [] for a in by_address}
    for node, node_deps in deps.items():
        for dep in node_deps:
            rdeps[dep].append(node)

    graph = ResourceGraph(
        specs=by_address,
        kinds={k: v for k, v in kinds.items()},
        edges=edges,
        outputs=named,
        order=order,
        _deps=deps,
        _rdeps=rdeps,
    )
    logger.debug("Graph built: %d resources, %d edges", len(by_address), len(edges))
    return graph
