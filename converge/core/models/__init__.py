"""
Domain models — Pydantic types for the convergence engine.

All models are re-exported here for convenient access:

    from converge.core.models import ResourceSpec, Reference, Plan, StateSnapshot
"""

from converge.core.models.kind import ResourceKind
from converge.core.models.lifecycle import Lifecycle, ResourceStatus
from converge.core.models.plan import Plan, PlanAction, PlanEntry, entry_id
from converge.core.models.project import Project, RetrySettings
from converge.core.models.resource import (
    DependencyEdge,
    NamedOutput,
    Reference,
    ResourceSpec,
    iter_references,
    make_address,
)
from converge.core.models.state import ResourceState, StateSnapshot

__all__ = [
    "DependencyEdge",
    "Lifecycle",
    "NamedOutput",
    "Plan",
    "PlanAction",
    "PlanEntry",
    "Project",
    "Reference",
    "ResourceKind",
    "ResourceSpec",
    "ResourceState",
    "ResourceStatus",
    "RetrySettings",
    "StateSnapshot",
    "entry_id",
    "iter_references",
    "make_address",
]
