"""
AWS error classification.

Maps botocore failures onto the engine taxonomy. Throttling, service
hiccups and the usual eventual-consistency errors (a role that "cannot be
assumed" seconds after it was created, a VPC id not yet visible, a
dependency still being torn down) are transient. Everything else is
terminal.
"""

from __future__ import annotations

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
    WaiterError,
)

from converge.core.engine.errors import (
    ProviderError,
    TerminalProviderError,
    TransientProviderError,
)

TRANSIENT_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "RequestThrottled",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServerException",
    "InternalError",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
    "DependencyViolation",
    "ResourceInUseException",
    "InvalidVpcID.NotFound",
    "InvalidSubnetID.NotFound",
    "ConcurrentModification",
})

# InvalidParameterException texts that mean "IAM has not propagated yet"
_PROPAGATION_HINTS = (
    "could not be assumed",
    "cannot be assumed",
    "not authorized to perform: iam:passrole",
)

NOT_FOUND_CODES = frozenset({
    "NoSuchEntity",
    "ResourceNotFoundException",
    "InvalidVpcID.NotFound",
    "InvalidSubnetID.NotFound",
})


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_not_found(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) in NOT_FOUND_CODES


def _is_propagation_lag(message: str) -> bool:
    msg = message.lower()
    if any(hint in msg for hint in _PROPAGATION_HINTS):
        return True
    return "role" in msg and "assume" in msg


def classify(exc: Exception, operation: str) -> ProviderError:
    """Turn a botocore exception into a Transient/Terminal provider error."""
    if isinstance(exc, ClientError):
        code = error_code(exc)
        message = exc.response.get("Error", {}).get("Message", str(exc))
        detail = f"{code}: {message}"
        if code in TRANSIENT_CODES:
            return TransientProviderError(f"{operation} throttled or not yet consistent", detail)
        if code == "InvalidParameterException" and _is_propagation_lag(message):
            return TransientProviderError(f"{operation}: IAM change not propagated yet", detail)
        return TerminalProviderError(f"{operation} rejected", detail)

    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return TransientProviderError(f"{operation}: connection problem", str(exc))

    if isinstance(exc, WaiterError):
        if "Max attempts exceeded" in str(exc):
            return TransientProviderError(f"{operation}: still in progress", str(exc))
        return TerminalProviderError(f"{operation}: reached a failure state", str(exc))

    if isinstance(exc, NoCredentialsError):
        return TerminalProviderError("AWS credentials not found", str(exc))

    if isinstance(exc, BotoCoreError):
        return TerminalProviderError(f"{operation} failed", str(exc))

    return TerminalProviderError(f"{operation} failed", f"{type(exc).__name__}: {exc}")
