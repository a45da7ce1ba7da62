"""
Engine error taxonomy.

Build-time errors (SpecError, CycleError, UnknownReferenceError) are raised
before any provider is called. Provider errors are raised by providers and
classified by the executor: transient ones are retried, terminal ones fail
the entry. OutputNotReadyError means something asked for an output before
its resource finished, which the scheduler must never allow.
"""

from __future__ import annotations


class ConvergeError(Exception):
    """Base class for all engine errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class SpecError(ConvergeError):
    """Resource documents are malformed (bad shape, duplicate address, unknown kind)."""


class CycleError(ConvergeError):
    """The dependency graph is not acyclic."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle: " + " -> ".join(cycle))


class UnknownReferenceError(ConvergeError):
    """A reference points at a resource or output that does not exist."""

    def __init__(self, source: str, target: str, detail: str = ""):
        self.source = source
        self.target = target
        msg = f"{source} references unknown '{target}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class OutputNotReadyError(ConvergeError):
    """An output was requested before its resource reached ready."""

    def __init__(self, address: str, output: str):
        self.address = address
        self.output = output
        super().__init__(f"Output '{output}' of {address} is not ready")


class InvalidTransitionError(ConvergeError):
    """A resource lifecycle transition that the state machine forbids."""


class StateError(ConvergeError):
    """The state file is unreadable, corrupt, or was changed underneath us."""


class ProviderError(ConvergeError):
    """Raised by a provider when a remote operation fails.

    ``detail`` carries the remote error text (API error code and message).
    """

    def __init__(self, message: str, detail: str = ""):
        self.detail = detail or message
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Rate limiting, eventual-consistency lag: worth retrying."""


class TerminalProviderError(ProviderError):
    """Validation errors, access denied, conflicts: retrying will not help."""
