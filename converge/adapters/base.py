"""
Provider base — the contract between the executor and a cloud API.

The executor only talks to providers through this interface, and only via
the ProviderRegistry. A provider implements create/read/update/delete for
the resource kinds it owns and reports failures by raising:

    TransientProviderError   throttling, eventual consistency, retry later
    TerminalProviderError    anything that will not fix itself

Any other exception escaping a provider is treated as terminal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from converge.core.models.state import ResourceState


class OperationContext(BaseModel):
    """Everything a provider needs to act on one resource.

    ``attributes`` are fully resolved: no References remain.
    """

    address: str
    kind: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    prior: ResourceState | None = None
    changed: list[str] = Field(default_factory=list)

    @property
    def resource_id(self) -> str:
        return self.prior.resource_id if self.prior else ""


class ProviderResult(BaseModel):
    """What a provider observed after a successful create/update/read.

    ``attributes`` are the remote attribute values the provider can read
    back; used for drift detection on refresh.
    """

    resource_id: str
    outputs: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)


class Provider(ABC):
    """Abstract base class for all providers.

    To create a new provider:
        1. Subclass Provider
        2. Implement name, kinds, is_available and the four operations
        3. Register it in the ProviderRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The provider identifier (e.g. 'aws', 'mock')."""

    @property
    @abstractmethod
    def kinds(self) -> tuple[str, ...]:
        """Resource kinds this provider manages. Empty means 'any kind'."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether credentials/SDKs are in place. Fast and never raises."""

    @abstractmethod
    def create(self, ctx: OperationContext) -> ProviderResult:
        """Create the resource and wait until it is usable."""

    @abstractmethod
    def read(self, ctx: OperationContext) -> ProviderResult | None:
        """Read current remote state, or None if the resource is gone."""

    @abstractmethod
    def update(self, ctx: OperationContext) -> ProviderResult:
        """Apply in-place changes to ``ctx.changed`` attributes."""

    @abstractmethod
    def delete(self, ctx: OperationContext) -> None:
        """Delete the resource. Deleting something already gone is not an error."""

    def handles(self, kind: str) -> bool:
        return not self.kinds or kind in self.kinds

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
