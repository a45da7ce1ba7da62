"""
Per-kind handler base for the AWS provider.

A handler owns one resource kind and one boto3 service. It receives an
already-built client, so tests can hand it a stubbed one.
"""

from __future__ import annotations

from typing import Any

from converge.adapters.base import OperationContext, ProviderResult

# Set on everything converge creates; a retried create finds and adopts
# the half-finished resource by it instead of creating a second one
MANAGED_TAG = "converge:address"

# boto3 waiter defaults: EKS control planes take 10-15 minutes
DEFAULT_WAITER_DELAY = 15
DEFAULT_WAITER_MAX_ATTEMPTS = 80


class KindHandler:
    """Create/read/update/delete for one kind."""

    kind: str = ""
    service: str = ""

    def __init__(
        self,
        region: str,
        wait: bool = True,
        waiter_delay: int = DEFAULT_WAITER_DELAY,
        waiter_max_attempts: int = DEFAULT_WAITER_MAX_ATTEMPTS,
    ):
        self.region = region
        self.wait = wait
        self.waiter_config = {"Delay": waiter_delay, "MaxAttempts": waiter_max_attempts}

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        raise NotImplementedError

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        raise NotImplementedError

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        raise NotImplementedError

    def delete(self, client: Any, ctx: OperationContext) -> None:
        raise NotImplementedError

    def _wait(self, client: Any, waiter_name: str, **kwargs: Any) -> None:
        if not self.wait:
            return
        client.get_waiter(waiter_name).wait(WaiterConfig=self.waiter_config, **kwargs)


# ── Tag helpers ─────────────────────────────────────────────────────


def tag_list(tags: dict[str, str] | None) -> list[dict[str, str]]:
    """{"k": "v"} → [{"Key": "k", "Value": "v"}] (EC2/IAM shape)."""
    return [{"Key": str(k), "Value": str(v)} for k, v in sorted((tags or {}).items())]


def tag_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or []}


def tag_delta(
    old: dict[str, str] | None, new: dict[str, str] | None
) -> tuple[dict[str, str], list[str]]:
    """Tags to set and tag keys to remove when going from old to new."""
    old = old or {}
    new = new or {}
    to_set = {k: v for k, v in new.items() if old.get(k) != v}
    to_remove = sorted(k for k in old if k not in new)
    return to_set, to_remove


def prior_attributes(ctx: OperationContext) -> dict[str, Any]:
    return dict(ctx.prior.attributes) if ctx.prior else {}


def managed_tags(ctx: OperationContext, tags: dict[str, Any] | None = None) -> dict[str, str]:
    """User tags plus the ownership marker for ``ctx.address``."""
    return {**{str(k): str(v) for k, v in (tags or {}).items()}, MANAGED_TAG: ctx.address}


def user_tags(tags: dict[str, str] | None) -> dict[str, str]:
    """Observed tags without the ownership marker."""
    return {k: v for k, v in (tags or {}).items() if k != MANAGED_TAG}


def owned_by(tags: dict[str, str] | None, ctx: OperationContext) -> bool:
    return (tags or {}).get(MANAGED_TAG) == ctx.address
