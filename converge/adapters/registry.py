"""
Provider registry — central dispatch for all provider operations.

The registry maps resource kinds to providers and is the only way the
engine reaches a provider. It normalizes failures: provider errors pass
through untouched, anything else is wrapped in TerminalProviderError so
the executor sees a single taxonomy.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from converge.adapters.base import OperationContext, Provider, ProviderResult
from converge.core.engine.errors import ProviderError, TerminalProviderError
from converge.core.models.kind import ResourceKind

logger = logging.getLogger(__name__)

OPERATIONS = ("create", "read", "update", "delete")


class ProviderRegistry:
    """Central registry and dispatcher for providers.

    Features:
        - Register providers by name
        - Route a resource kind to its provider (kind catalog first,
          then any provider that claims the kind)
        - Mock mode: route every kind to one stand-in provider
    """

    def __init__(
        self,
        kinds: dict[str, ResourceKind] | None = None,
        mock_provider: Provider | None = None,
    ):
        self._providers: dict[str, Provider] = {}
        self._kinds = kinds or {}
        self._mock = mock_provider
        self.timings: dict[str, list[float]] = {op: [] for op in OPERATIONS}

    @property
    def mock_mode(self) -> bool:
        return self._mock is not None

    def register(self, provider: Provider) -> None:
        name = provider.name
        if name in self._providers:
            logger.warning("Overwriting existing provider: %s", name)
        self._providers[name] = provider
        logger.debug("Registered provider: %s", name)

    def get(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    def provider_for(self, kind: str) -> Provider:
        """Resolve the provider responsible for ``kind``.

        Raises:
            TerminalProviderError: If no provider handles the kind.
        """
        if self._mock is not None:
            return self._mock

        declared = self._kinds.get(kind)
        if declared is not None and declared.provider in self._providers:
            return self._providers[declared.provider]

        for provider in self._providers.values():
            if provider.kinds and kind in provider.kinds:
                return provider
        for provider in self._providers.values():
            if not provider.kinds:
                return provider

        raise TerminalProviderError(f"No provider registered for kind '{kind}'")

    def provider_status(self) -> dict[str, dict[str, Any]]:
        status = {}
        for name, provider in self._providers.items():
            try:
                available = provider.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "kinds": list(provider.kinds),
                "type": provider.__class__.__name__,
            }
        return status

    def dispatch(self, operation: str, ctx: OperationContext) -> ProviderResult | None:
        """Run ``operation`` for ``ctx`` on the responsible provider.

        Raises:
            TransientProviderError: Passed through from the provider.
            TerminalProviderError: From the provider, or wrapping any
                unexpected exception it raised.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown provider operation '{operation}'")

        provider = self.provider_for(ctx.kind)
        start = time.monotonic()
        try:
            return getattr(provider, operation)(ctx)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(
                "Provider %s raised during %s of %s: %s",
                provider.name, operation, ctx.address, e,
            )
            raise TerminalProviderError(
                f"Unexpected error in {provider.name}.{operation}",
                detail=f"{type(e).__name__}: {e}",
            ) from e
        finally:
            self.timings[operation].append(time.monotonic() - start)
