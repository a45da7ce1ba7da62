"""
Resource models — the declared side of convergence.

A ResourceSpec says "this resource should exist with these attributes."
Attribute values may embed References to another resource's computed
outputs. References are typed placeholders: they are resolved by the
output resolver once the target is ready, never by string templating.
"""

from __future__ import annotations

from typing import Any, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def make_address(kind: str, name: str) -> str:
    """Canonical address for a (kind, name) pair."""
    return f"{kind}.{name}"


class Reference(BaseModel):
    """A deferred value: output ``output`` of resource ``kind.name``."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    output: str

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    @classmethod
    def parse(cls, expr: str) -> Reference:
        """Parse ``kind.name.output`` into a Reference.

        Raises:
            ValueError: If the expression does not have exactly three parts.
        """
        parts = expr.strip().split(".")
        if len(parts) != 3 or not all(parts):
            raise ValueError(
                f"Invalid reference '{expr}': expected 'kind.name.output'"
            )
        return cls(kind=parts[0], name=parts[1], output=parts[2])

    def __str__(self) -> str:
        return f"{self.address}.{self.output}"


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference nested anywhere inside an attribute value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


class ResourceSpec(BaseModel):
    """A desired resource, identified by (kind, name).

    Frozen: once a spec is handed to the graph builder it is not changed
    for the rest of the planning pass.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    @field_validator("kind", "name")
    @classmethod
    def _no_dots(cls, v: str) -> str:
        if not v or "." in v:
            raise ValueError(f"'{v}' must be non-empty and must not contain '.'")
        return v

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    def references(self) -> list[Reference]:
        """All references embedded in this spec's attributes."""
        return list(iter_references(self.attributes))


class DependencyEdge(BaseModel):
    """``dependent`` may not start applying until ``dependency`` is ready."""

    model_config = ConfigDict(frozen=True)

    dependent: str
    dependency: str
    reason: Literal["reference", "explicit"] = "reference"


class NamedOutput(BaseModel):
    """A top-level output exported from a set of resource documents."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: Reference
    description: str = ""
