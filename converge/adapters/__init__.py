"""Providers: the boundary between the engine and cloud APIs."""

from converge.adapters.base import OperationContext, Provider, ProviderResult
from converge.adapters.mock import MockProvider
from converge.adapters.registry import ProviderRegistry

__all__ = [
    "MockProvider",
    "OperationContext",
    "Provider",
    "ProviderRegistry",
    "ProviderResult",
]
