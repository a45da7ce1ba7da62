"""
Mock provider — an in-memory cloud for tests and ``--mock`` runs.

Accepts every kind. Resources live in a dict; outputs are synthesized
from the kind's declared output names. Failures can be scripted per
address and operation, and every call is logged with monotonic start and
finish timestamps so ordering can be asserted.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any

from converge.adapters.base import OperationContext, Provider, ProviderResult
from converge.core.engine.errors import TerminalProviderError, TransientProviderError
from converge.core.models.kind import ResourceKind
from converge.core.models.state import StateSnapshot


@dataclass
class MockCall:
    """One provider call as seen by the mock."""

    operation: str
    address: str
    started_at: float
    finished_at: float = 0.0
    ok: bool = True


class MockProvider(Provider):
    """Universal mock provider.

    By default every operation succeeds. Use ``fail_transient`` and
    ``fail_terminal`` to script failures, ``drift``/``vanish`` to simulate
    changes made outside the engine.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        kinds: dict[str, ResourceKind] | None = None,
        latency: float = 0.0,
        available: bool = True,
    ):
        self._name = provider_name
        self._kinds = kinds or {}
        self._latency = latency
        self._available = available
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._failures: dict[tuple[str, str], deque[Exception]] = defaultdict(deque)
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[MockCall] = []

    # ── Provider interface ───────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def kinds(self) -> tuple[str, ...]:
        return ()

    def is_available(self) -> bool:
        return self._available

    def create(self, ctx: OperationContext) -> ProviderResult:
        def op() -> ProviderResult:
            resource_id = f"{ctx.kind}-{next(self._ids):04d}"
            record = {
                "id": resource_id,
                "kind": ctx.kind,
                "attributes": dict(ctx.attributes),
                "outputs": self._outputs(ctx.kind, ctx.name, resource_id, ctx.attributes),
            }
            self.resources[ctx.address] = record
            return self._result(record)

        return self._run("create", ctx, op)

    def read(self, ctx: OperationContext) -> ProviderResult | None:
        def op() -> ProviderResult | None:
            record = self.resources.get(ctx.address)
            return self._result(record) if record else None

        return self._run("read", ctx, op)

    def update(self, ctx: OperationContext) -> ProviderResult:
        def op() -> ProviderResult:
            record = self.resources.get(ctx.address)
            if record is None:
                raise TerminalProviderError(
                    f"{ctx.address} does not exist", detail="ResourceNotFound"
                )
            record["attributes"] = dict(ctx.attributes)
            record["outputs"] = self._outputs(ctx.kind, ctx.name, record["id"], ctx.attributes)
            return self._result(record)

        return self._run("update", ctx, op)

    def delete(self, ctx: OperationContext) -> None:
        def op() -> None:
            self.resources.pop(ctx.address, None)

        self._run("delete", ctx, op)

    # ── Scripting ────────────────────────────────────────────────

    def fail_transient(
        self,
        address: str,
        operation: str = "create",
        times: int = 1,
        detail: str = "Throttling: Rate exceeded",
    ) -> None:
        """Make the next ``times`` calls of ``operation`` on ``address`` fail transiently."""
        for _ in range(times):
            self._failures[(address, operation)].append(
                TransientProviderError(f"{operation} {address} throttled", detail=detail)
            )

    def fail_terminal(
        self,
        address: str,
        operation: str = "create",
        detail: str = "InvalidParameterException",
    ) -> None:
        """Make the next call of ``operation`` on ``address`` fail for good."""
        self._failures[(address, operation)].append(
            TerminalProviderError(f"{operation} {address} rejected", detail=detail)
        )

    def seed(self, snapshot: StateSnapshot) -> None:
        """Load tracked resources so a fresh mock agrees with recorded state."""
        with self._lock:
            highest = 0
            for address, resource in snapshot.resources.items():
                self.resources.setdefault(address, {
                    "id": resource.resource_id,
                    "kind": resource.kind,
                    "attributes": dict(resource.attributes),
                    "outputs": dict(resource.outputs),
                })
                suffix = resource.resource_id.rpartition("-")[2]
                if suffix.isdigit():
                    highest = max(highest, int(suffix))
            self._ids = itertools.count(highest + 1)

    def drift(self, address: str, **attributes: Any) -> None:
        """Change remote attributes behind the engine's back."""
        self.resources[address]["attributes"].update(attributes)

    def vanish(self, address: str) -> None:
        """Delete a resource behind the engine's back."""
        self.resources.pop(address, None)

    # ── Inspection ───────────────────────────────────────────────

    def calls_for(self, address: str, operation: str | None = None) -> list[MockCall]:
        with self._lock:
            return [
                c for c in self.calls
                if c.address == address and (operation is None or c.operation == operation)
            ]

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def reset(self) -> None:
        with self._lock:
            self.calls.clear()
            self._failures.clear()

    # ── Internals ────────────────────────────────────────────────

    def _run(self, operation: str, ctx: OperationContext, op):  # type: ignore[no-untyped-def]
        call = MockCall(operation=operation, address=ctx.address, started_at=time.monotonic())
        with self._lock:
            self.calls.append(call)
            queue = self._failures.get((ctx.address, operation))
            failure = queue.popleft() if queue else None

        if self._latency:
            time.sleep(self._latency)

        try:
            if failure is not None:
                raise failure
            with self._lock:
                return op()
        except Exception:
            call.ok = False
            raise
        finally:
            call.finished_at = time.monotonic()

    def _outputs(
        self,
        kind: str,
        name: str,
        resource_id: str,
        attributes: dict[str, Any],
    ) -> dict[str, Any]:
        declared = self._kinds.get(kind)
        names = declared.outputs if declared else []
        outputs: dict[str, Any] = {}
        for out in names:
            if out in attributes:
                outputs[out] = attributes[out]
            elif out == "name":
                outputs[out] = attributes.get("name", name)
            elif out == "arn":
                outputs[out] = f"arn:mock:{kind}:{resource_id}"
            elif out == "endpoint":
                outputs[out] = f"https://{resource_id}.mock.local"
            else:
                outputs[out] = f"{out}-{resource_id}"
        return outputs

    @staticmethod
    def _result(record: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            resource_id=record["id"],
            outputs=dict(record["outputs"]),
            attributes=dict(record["attributes"]),
        )
