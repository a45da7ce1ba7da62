"""
Output resolver — computed attributes of ready resources.

Once a resource reaches ``ready`` its outputs are published here; from
then on any Reference to it can be resolved. Asking for an output of a
resource that has not been published is an ordering bug and raises
OutputNotReadyError.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from converge.core.engine.errors import OutputNotReadyError, UnknownReferenceError
from converge.core.models.kind import ResourceKind
from converge.core.models.resource import NamedOutput, Reference, make_address

logger = logging.getLogger(__name__)


class OutputResolver:
    """Thread-safe registry of published outputs, keyed by address."""

    def __init__(self, kinds: dict[str, ResourceKind] | None = None):
        self._kinds = kinds or {}
        self._lock = threading.Lock()
        self._ready: dict[str, dict[str, Any]] = {}

    def publish(self, address: str, outputs: dict[str, Any]) -> None:
        """Mark ``address`` ready and record its outputs (including ``id``)."""
        with self._lock:
            self._ready[address] = dict(outputs)
        logger.debug("Outputs published for %s: %s", address, sorted(outputs))

    def is_ready(self, address: str) -> bool:
        with self._lock:
            return address in self._ready

    def get(self, ref: Reference) -> Any:
        """Value of one reference.

        Raises:
            OutputNotReadyError: If the owning resource is not ready yet.
            UnknownReferenceError: If the kind does not declare the output.
        """
        kind = self._kinds.get(ref.kind)
        if kind is not None and not kind.has_output(ref.output):
            raise UnknownReferenceError("resolver", str(ref), "output not declared")

        with self._lock:
            outputs = self._ready.get(make_address(ref.kind, ref.name))
        if outputs is None:
            raise OutputNotReadyError(ref.address, ref.output)
        if ref.output not in outputs:
            raise UnknownReferenceError(
                "resolver", str(ref), "resource did not report this output"
            )
        return outputs[ref.output]

    def resolve(self, value: Any) -> Any:
        """Copy of ``value`` with every nested Reference replaced by its value."""
        if isinstance(value, Reference):
            return self.get(value)
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if isinstance(value, tuple):
            return [self.resolve(v) for v in value]
        return value

    def resolve_named(self, outputs: list[NamedOutput]) -> dict[str, Any]:
        """Values of named outputs whose resources are ready; others are skipped."""
        values: dict[str, Any] = {}
        for output in outputs:
            try:
                values[output.name] = self.get(output.value)
            except OutputNotReadyError:
                logger.debug("Output '%s' skipped: %s not ready", output.name, output.value.address)
        return values
