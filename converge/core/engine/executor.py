"""
Engine executor — applies a Plan against providers.

The executor walks the plan's entry DAG with a bounded worker pool:

    planned entries → ready when every dependency entry succeeded → submit
    worker: resolve references → provider call (with retry) → write state
            → publish outputs → ready

Failure handling:
    - TransientProviderError is retried with backoff; exhausting the
      attempts fails the entry.
    - A failed entry fails its dependents ("dependency_failed") without
      calling any provider for them.
    - Unless ``continue_on_error`` is set, the first failure also aborts
      the plan: nothing new is scheduled, in-flight entries finish.
    - Already-converged resources stay converged. There is no rollback.

Cancellation works the same way as an abort: set the event and the
executor stops scheduling, lets in-flight applies finish, and reports the
rest as cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from converge.adapters.base import OperationContext, ProviderResult
from converge.adapters.registry import ProviderRegistry
from converge.core.engine.errors import ConvergeError, ProviderError, StateError
from converge.core.engine.outputs import OutputResolver
from converge.core.models.kind import ResourceKind
from converge.core.models.lifecycle import Lifecycle, ResourceStatus
from converge.core.models.plan import Plan, PlanAction, PlanEntry
from converge.core.models.state import ResourceState
from converge.core.persistence.state_file import StateStore
from converge.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Entry outcomes, as reported
APPLIED = "applied"
UNCHANGED = "unchanged"
FAILED = "failed"
DEPENDENCY_FAILED = "dependency_failed"
CANCELLED = "cancelled"
SKIPPED = "skipped"


@dataclass
class EntryResult:
    """Final outcome of one plan entry."""

    entry_id: str
    address: str
    action: str
    status: ResourceStatus = ResourceStatus.PLANNED
    outcome: str = CANCELLED
    attempts: int = 0
    error_kind: str | None = None
    error: str | None = None
    started_at: float | None = None
    ready_at: float | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ResourceStatus.READY

    @property
    def failed(self) -> bool:
        return self.status == ResourceStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry_id,
            "address": self.address,
            "action": self.action,
            "status": self.status.value,
            "outcome": self.outcome,
            "attempts": self.attempts,
            "error_kind": self.error_kind,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    operation_id: str = ""
    results: list[EntryResult] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    aborted: bool = False
    cancelled: bool = False
    dry_run: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def applied(self) -> int:
        return sum(1 for r in self.results if r.outcome == APPLIED)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome in (SKIPPED, CANCELLED))

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and not self.cancelled

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failed == 0:
            return "ok"
        if self.applied > 0:
            return "partial"
        return "failed"

    def get(self, entry_id: str) -> EntryResult | None:
        for r in self.results:
            if r.entry_id == entry_id:
                return r
        return None

    def by_address(self) -> dict[str, EntryResult]:
        """Final result per resource (a replacement's create wins over its delete)."""
        final: dict[str, EntryResult] = {}
        for r in self.results:
            final[r.address] = r
        return final

    def failures(self) -> list[EntryResult]:
        return [r for r in self.results if r.failed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self.status,
            "aborted": self.aborted,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "total": self.total,
            "applied": self.applied,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
            "outputs": self.outputs,
        }


class PlanExecutor:
    """Runs one plan to completion. Create a new instance per run."""

    def __init__(
        self,
        plan: Plan,
        registry: ProviderRegistry,
        store: StateStore,
        *,
        kinds: dict[str, ResourceKind] | None = None,
        parallelism: int = 4,
        retry_policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        continue_on_error: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.plan = plan
        self.registry = registry
        self.store = store
        self.parallelism = parallelism
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.continue_on_error = continue_on_error

        self.lifecycle = Lifecycle(clock=clock)
        self.resolver = OutputResolver(kinds)
        self._results: dict[str, EntryResult] = {}
        self._attempts: dict[str, int] = {}

    # ── Public ───────────────────────────────────────────────────

    def run(self, dry_run: bool = False) -> ExecutionReport:
        self._check_plan_is_current()
        self._check_entries()

        report = ExecutionReport(operation_id=self.plan.operation_id, dry_run=dry_run)
        for entry in self.plan.entries:
            self.lifecycle.register(entry.id)
            self.lifecycle.transition(entry.id, ResourceStatus.PLANNED)
            self._results[entry.id] = EntryResult(
                entry_id=entry.id,
                address=entry.address,
                action=entry.action.value,
            )

        if dry_run:
            self._dry_run()
        else:
            report.aborted, report.cancelled = self._schedule()
            report.outputs = self._record_outputs()

        report.results = [self._results[e.id] for e in self.plan.entries]
        logger.info(
            "Plan %s finished: %s (%d applied, %d failed, %d skipped)",
            self.plan.operation_id or "-",
            report.status,
            report.applied,
            report.failed,
            report.skipped,
        )
        return report

    # ── Scheduling ───────────────────────────────────────────────

    def _check_plan_is_current(self) -> None:
        if self.plan.lineage and self.plan.lineage != self.store.lineage:
            raise StateError("Plan was computed against a different state lineage")
        if self.plan.state_serial != self.store.serial:
            raise StateError(
                f"Stale plan: computed at state serial {self.plan.state_serial}, "
                f"state is now at {self.store.serial}"
            )

    def _check_entries(self) -> None:
        for entry in self.plan.entries:
            _require_inputs(entry)

    def _dry_run(self) -> None:
        for entry in self.plan.entries:
            if entry.action == PlanAction.NOOP:
                self._finish_noop(entry)
            else:
                self._results[entry.id].outcome = SKIPPED

    def _schedule(self) -> tuple[bool, bool]:
        """Drive the entry DAG. Returns (aborted, cancelled)."""
        pending: list[PlanEntry] = list(self.plan.entries)
        succeeded: set[str] = set()
        failed: set[str] = set()
        in_flight: dict[Future, PlanEntry] = {}
        aborted = False
        cancelled = False

        with ThreadPoolExecutor(
            max_workers=self.parallelism,
            thread_name_prefix="converge-apply",
        ) as pool:
            while True:
                if self.cancel_event.is_set() and not cancelled:
                    logger.warning("Cancellation requested — no new entries will start")
                    cancelled = True
                stopping = aborted or cancelled

                still_pending: list[PlanEntry] = []
                for entry in pending:
                    if any(dep in failed for dep in entry.depends_on):
                        self._fail_dependency(entry, failed)
                        failed.add(entry.id)
                        continue
                    runnable = all(dep in succeeded for dep in entry.depends_on)
                    if stopping or not runnable:
                        still_pending.append(entry)
                        continue
                    if entry.action == PlanAction.NOOP:
                        self._finish_noop(entry)
                        succeeded.add(entry.id)
                        continue
                    if len(in_flight) >= self.parallelism:
                        still_pending.append(entry)
                        continue
                    self._start(entry)
                    in_flight[pool.submit(self._apply, entry)] = entry
                pending = still_pending

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    entry = in_flight.pop(future)
                    if future.result():
                        succeeded.add(entry.id)
                    else:
                        failed.add(entry.id)
                        if not self.continue_on_error and not aborted:
                            logger.error("Aborting plan after failure of %s", entry.id)
                            aborted = True

        for entry in pending:
            self._results[entry.id].outcome = CANCELLED

        return aborted, cancelled

    def _start(self, entry: PlanEntry) -> None:
        ts = self.lifecycle.transition(entry.id, ResourceStatus.APPLYING)
        self._results[entry.id].started_at = ts
        logger.info("→ %s", entry.describe())

    def _finish_noop(self, entry: PlanEntry) -> None:
        prior = _require_inputs(entry)
        self.resolver.publish(entry.address, prior.all_outputs())
        result = self._results[entry.id]
        result.ready_at = self.lifecycle.transition(entry.id, ResourceStatus.READY)
        result.status = ResourceStatus.READY
        result.outcome = UNCHANGED

    def _fail_dependency(self, entry: PlanEntry, failed: set[str]) -> None:
        blocking = [d for d in entry.depends_on if d in failed]
        self.lifecycle.transition(entry.id, ResourceStatus.FAILED)
        result = self._results[entry.id]
        result.status = ResourceStatus.FAILED
        result.outcome = DEPENDENCY_FAILED
        result.error_kind = "DependencyFailed"
        result.error = f"Dependency failed: {', '.join(blocking)}"
        logger.info("⊘ %s skipped: %s", entry.id, result.error)

    # ── Worker ───────────────────────────────────────────────────

    def _apply(self, entry: PlanEntry) -> bool:
        """Apply one entry. Runs in a worker thread; never raises."""
        result = self._results[entry.id]
        start = time.monotonic()
        try:
            self._apply_entry(entry)
        except ConvergeError as e:
            result.status = ResourceStatus.FAILED
            result.outcome = FAILED
            result.error_kind = e.kind
            result.error = e.detail if isinstance(e, ProviderError) else str(e)
            self.lifecycle.transition(entry.id, ResourceStatus.FAILED)
            logger.error("✗ %s failed (%s): %s", entry.id, e.kind, result.error)
            return False
        except Exception as e:
            result.status = ResourceStatus.FAILED
            result.outcome = FAILED
            result.error_kind = type(e).__name__
            result.error = str(e)
            self.lifecycle.transition(entry.id, ResourceStatus.FAILED)
            logger.exception("✗ %s failed unexpectedly", entry.id)
            return False
        finally:
            result.attempts = self._attempts.get(entry.id, 0)
            result.duration_ms = int((time.monotonic() - start) * 1000)

        result.status = ResourceStatus.READY
        result.outcome = APPLIED
        result.ready_at = self.lifecycle.transition(entry.id, ResourceStatus.READY)
        logger.info("✓ %s (%dms)", entry.id, result.duration_ms)
        return True

    def _apply_entry(self, entry: PlanEntry) -> None:
        if entry.action == PlanAction.DELETE:
            self._delete(entry)
            return

        spec = _require_inputs(entry)
        ctx = OperationContext(
            address=entry.address,
            kind=entry.kind,
            name=entry.name,
            attributes=self.resolver.resolve(spec.attributes),
            prior=entry.prior,
            changed=list(entry.changed),
        )
        operation = "create" if entry.action == PlanAction.CREATE else "update"
        provider_result = self._call(entry, operation, ctx)
        if provider_result is None:
            raise ProviderError(f"{operation} of {entry.address} returned nothing")

        self.store.put(
            ResourceState(
                kind=entry.kind,
                name=entry.name,
                resource_id=provider_result.resource_id,
                attributes=ctx.attributes,
                outputs=provider_result.outputs,
                dependencies=list(entry.requires),
            )
        )
        self.resolver.publish(
            entry.address,
            {"id": provider_result.resource_id, **provider_result.outputs},
        )

    def _delete(self, entry: PlanEntry) -> None:
        if not entry.remote_gone:
            ctx = OperationContext(
                address=entry.address,
                kind=entry.kind,
                name=entry.name,
                attributes=entry.prior.attributes if entry.prior else {},
                prior=entry.prior,
            )
            self._call(entry, "delete", ctx)
        else:
            logger.info("%s already gone remotely — dropping from state", entry.address)
        self.store.remove(entry.address)

    def _call(
        self,
        entry: PlanEntry,
        operation: str,
        ctx: OperationContext,
    ) -> ProviderResult | None:
        def attempt() -> ProviderResult | None:
            self._attempts[entry.id] = self._attempts.get(entry.id, 0) + 1
            return self.registry.dispatch(operation, ctx)

        # cancel_event only stops scheduling; a started entry retries to the end
        value, _ = self.retry_policy.call(attempt, label=entry.id)
        return value

    # ── Outputs ──────────────────────────────────────────────────

    def _record_outputs(self) -> dict[str, Any]:
        """Persist named outputs; keep old values for resources still tracked."""
        values = self.resolver.resolve_named(list(self.plan.outputs))
        previous = self.store.snapshot()
        for output in self.plan.outputs:
            if output.name in values:
                continue
            if output.name in previous.outputs and previous.get(output.value.address):
                values[output.name] = previous.outputs[output.name]
        if values != previous.outputs:
            self.store.set_outputs(values)
        return values


def _require_inputs(entry: PlanEntry) -> Any:
    """The spec a create/update applies, or the prior state a noop republishes."""
    if entry.action == PlanAction.NOOP:
        if entry.prior is None:
            raise StateError(f"Malformed plan: {entry.id} has no recorded state to keep")
        return entry.prior
    if entry.action in (PlanAction.CREATE, PlanAction.UPDATE):
        if entry.spec is None:
            raise StateError(f"Malformed plan: {entry.id} has no resource spec")
        return entry.spec
    return None


def execute_plan(
    plan: Plan,
    registry: ProviderRegistry,
    store: StateStore,
    *,
    kinds: dict[str, ResourceKind] | None = None,
    parallelism: int = 4,
    retry_policy: RetryPolicy | None = None,
    cancel_event: threading.Event | None = None,
    continue_on_error: bool = False,
    dry_run: bool = False,
    clock: Callable[[], float] = time.monotonic,
) -> ExecutionReport:
    """Execute ``plan`` and return a per-entry report.

    Raises:
        StateError: If the plan was computed against an older state.
    """
    executor = PlanExecutor(
        plan,
        registry,
        store,
        kinds=kinds,
        parallelism=parallelism,
        retry_policy=retry_policy,
        cancel_event=cancel_event,
        continue_on_error=continue_on_error,
        clock=clock,
    )
    return executor.run(dry_run=dry_run)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
