"""
AWS provider — boto3 implementation of the provider contract.

Routes each kind to its KindHandler, builds one boto3 client per service
lazily (clients are thread-safe, sessions are not), and converts every
botocore failure through ``classify`` so the executor only ever sees
Transient/Terminal provider errors.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from converge.adapters.aws.eks import EksClusterHandler, EksNodeGroupHandler
from converge.adapters.aws.errors import classify
from converge.adapters.aws.handler import KindHandler
from converge.adapters.aws.iam import IamRoleHandler, RolePolicyAttachmentHandler
from converge.adapters.aws.network import SubnetHandler, VpcHandler
from converge.adapters.base import OperationContext, Provider, ProviderResult
from converge.core.engine.errors import ProviderError, TerminalProviderError

logger = logging.getLogger(__name__)

HANDLER_TYPES: tuple[type[KindHandler], ...] = (
    VpcHandler,
    SubnetHandler,
    IamRoleHandler,
    RolePolicyAttachmentHandler,
    EksClusterHandler,
    EksNodeGroupHandler,
)

# Retries inside botocore stay small; the engine's RetryPolicy owns backoff
_CLIENT_CONFIG = Config(retries={"max_attempts": 2, "mode": "standard"})


class AwsProvider(Provider):
    """Provider for the built-in ``aws_*`` kinds."""

    def __init__(
        self,
        region: str = "us-east-1",
        session: Any | None = None,
        clients: dict[str, Any] | None = None,
        wait: bool = True,
        waiter_delay: int | None = None,
    ):
        self._region = region
        self._session = session
        self._clients: dict[str, Any] = dict(clients or {})
        self._lock = threading.Lock()
        kwargs: dict[str, Any] = {"wait": wait}
        if waiter_delay is not None:
            kwargs["waiter_delay"] = waiter_delay
        self._handlers = {h.kind: h(region, **kwargs) for h in HANDLER_TYPES}

    @property
    def name(self) -> str:
        return "aws"

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    @property
    def region(self) -> str:
        return self._region

    def is_available(self) -> bool:
        try:
            return self._get_session().get_credentials() is not None
        except (BotoCoreError, ClientError):
            return False

    def create(self, ctx: OperationContext) -> ProviderResult:
        return self._call("create", ctx)

    def read(self, ctx: OperationContext) -> ProviderResult | None:
        return self._call("read", ctx)

    def update(self, ctx: OperationContext) -> ProviderResult:
        return self._call("update", ctx)

    def delete(self, ctx: OperationContext) -> None:
        self._call("delete", ctx)

    # ── Internals ────────────────────────────────────────────────

    def _call(self, operation: str, ctx: OperationContext) -> Any:
        handler = self._handlers.get(ctx.kind)
        if handler is None:
            raise TerminalProviderError(f"AWS provider does not manage kind '{ctx.kind}'")

        method: Callable[[Any, OperationContext], Any] = getattr(handler, operation)
        logger.debug("aws %s %s", operation, ctx.address)
        try:
            return method(self.client(handler.service), ctx)
        except ProviderError:
            raise
        except (ClientError, BotoCoreError) as e:
            error = classify(e, f"{operation} {ctx.address}")
            logger.warning("%s: %s", error, error.detail)
            raise error from e

    def client(self, service: str) -> Any:
        with self._lock:
            if service not in self._clients:
                self._clients[service] = self._get_session().client(
                    service, region_name=self._region, config=_CLIENT_CONFIG
                )
            return self._clients[service]

    def _get_session(self) -> Any:
        if self._session is None:
            self._session = boto3.session.Session(region_name=self._region)
        return self._session
