"""
Project model — settings loaded from converge.yml.

Says where the resource documents live, where state is kept, which
provider applies changes, and how aggressively to apply them.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from converge.core.models.kind import ResourceKind


class RetrySettings(BaseModel):
    """Backoff for transient provider failures."""

    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=0.3, ge=0, le=1)


class Project(BaseModel):
    """Root project settings — loaded from converge.yml."""

    version: int = 1

    name: str
    description: str = ""

    specs: list[str] = Field(default_factory=lambda: ["infra"])
    state_path: str = ".state/converge.json"

    provider: Literal["mock", "aws"] = "mock"
    region: str = "us-east-1"

    parallelism: int = Field(default=4, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    continue_on_error: bool = False
    refresh: bool = False

    kinds: list[ResourceKind] = Field(default_factory=list)
