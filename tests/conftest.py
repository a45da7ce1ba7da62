"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from converge.adapters.mock import MockProvider
from converge.adapters.registry import ProviderRegistry
from converge.core.engine.executor import execute_plan
from converge.core.engine.graph import build_graph
from converge.core.engine.reconciler import compute_plan
from converge.core.models.kind import ResourceKind
from converge.core.models.resource import Reference, ResourceSpec
from converge.core.persistence.state_file import StateStore
from converge.core.reliability.retry import RetryPolicy


@pytest.fixture
def kinds() -> dict[str, ResourceKind]:
    """A small catalog: network → cluster → nodes."""
    return {
        "network": ResourceKind(
            name="network",
            force_new=["cidr"],
            mutable=["tags"],
            outputs=["cidr"],
        ),
        "cluster": ResourceKind(
            name="cluster",
            required=["network_id"],
            force_new=["network_id", "subnets"],
            mutable=["version", "tags"],
            outputs=["name", "endpoint"],
        ),
        "nodes": ResourceKind(
            name="nodes",
            required=["cluster"],
            force_new=["cluster", "instance_type"],
            mutable=["size", "labels"],
            outputs=["status"],
        ),
    }


@pytest.fixture
def mock_provider(kinds: dict[str, ResourceKind]) -> MockProvider:
    return MockProvider(kinds=kinds)


@pytest.fixture
def registry(kinds: dict[str, ResourceKind], mock_provider: MockProvider) -> ProviderRegistry:
    return ProviderRegistry(kinds, mock_provider=mock_provider)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy that never actually sleeps."""
    return RetryPolicy(max_attempts=4, base_delay=0.0, max_delay=0.0, jitter=0.0, sleep=lambda _: None)


@pytest.fixture
def store() -> StateStore:
    """In-memory state store."""
    return StateStore()


@pytest.fixture
def stack_specs() -> list[ResourceSpec]:
    """network.main ← cluster.main ← nodes.workers."""
    return [
        ResourceSpec(kind="network", name="main", attributes={"cidr": "10.0.0.0/16"}),
        ResourceSpec(
            kind="cluster",
            name="main",
            attributes={
                "network_id": Reference.parse("network.main.id"),
                "version": "1.29",
            },
        ),
        ResourceSpec(
            kind="nodes",
            name="workers",
            attributes={"cluster": Reference.parse("cluster.main.name"), "size": 2},
        ),
    ]


@pytest.fixture
def converge_once(kinds, registry, fast_retry):  # type: ignore[no-untyped-def]
    """Build → plan → execute in one call; returns (plan, report)."""

    def run(specs, store, outputs=None, **kwargs):  # type: ignore[no-untyped-def]
        graph = build_graph(specs, kinds, outputs)
        plan = compute_plan(graph, store.snapshot())
        kwargs.setdefault("retry_policy", fast_retry)
        report = execute_plan(plan, registry, store, kinds=kinds, **kwargs)
        return plan, report

    return run


# ── On-disk projects ─────────────────────────────────────────────────


PROJECT_YML = """\
name: test-infra
description: Test project
specs: [infra]
provider: mock
parallelism: 2
retry:
  max_attempts: 3
  base_delay: 0
  max_delay: 0
  jitter: 0
kinds:
  - name: network
    force_new: [cidr]
    mutable: [tags]
    outputs: [cidr]
  - name: cluster
    required: [network_id]
    force_new: [network_id]
    mutable: [version]
    outputs: [name, endpoint]
"""

INFRA_YML = """\
resources:
  - kind: network
    name: main
    attributes:
      cidr: 10.0.0.0/16
  - kind: cluster
    name: main
    attributes:
      network_id: !ref network.main.id
      version: "1.29"
outputs:
  endpoint: !ref cluster.main.endpoint
  network: !ref network.main.id
"""


@pytest.fixture
def make_project(tmp_path: Path):  # type: ignore[no-untyped-def]
    """Write converge.yml + infra/main.yml; returns the config path."""

    def make(infra: str = INFRA_YML, config: str = PROJECT_YML) -> Path:
        (tmp_path / "converge.yml").write_text(textwrap.dedent(config), encoding="utf-8")
        infra_dir = tmp_path / "infra"
        infra_dir.mkdir(exist_ok=True)
        (infra_dir / "main.yml").write_text(textwrap.dedent(infra), encoding="utf-8")
        return tmp_path / "converge.yml"

    return make
