"""
Resource kind model — per-kind change semantics.

A kind declares which attributes can be patched in place and which force
a replacement (destroy + recreate). Undeclared attributes fall back to
``default_change``, which is ``replace`` unless the kind says otherwise.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ResourceKind(BaseModel):
    """Schema for one resource kind (e.g. ``aws_eks_cluster``)."""

    name: str
    provider: str = "mock"
    description: str = ""

    mutable: list[str] = Field(default_factory=list)
    force_new: list[str] = Field(default_factory=list)
    default_change: Literal["replace", "update"] = "replace"

    required: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)

    def requires_replacement(self, attribute: str) -> bool:
        """Whether changing ``attribute`` forces a destroy + recreate."""
        if attribute in self.force_new:
            return True
        if attribute in self.mutable:
            return False
        return self.default_change == "replace"

    def has_output(self, output: str) -> bool:
        """``id`` is implicit on every kind."""
        return output == "id" or output in self.outputs
