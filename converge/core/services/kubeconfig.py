"""
Kubeconfig export — turn a tracked EKS cluster into a kubeconfig document.

Reads the cluster's recorded outputs (endpoint, certificate authority,
name) from state; authentication is delegated to ``aws eks get-token``
through the exec credential plugin, so no secrets are written.
"""

from __future__ import annotations

import logging
from typing import Any

import yaml

from converge.core.models.state import ResourceState, StateSnapshot

logger = logging.getLogger(__name__)

CLUSTER_KIND = "aws_eks_cluster"
EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


class KubeconfigError(ValueError):
    """The requested resource cannot produce a kubeconfig."""


def build_kubeconfig(
    cluster_name: str,
    endpoint: str,
    certificate_authority: str,
    region: str,
    alias: str | None = None,
    profile: str | None = None,
) -> dict[str, Any]:
    """Kubeconfig mapping for one cluster, with a single context selected."""
    context = alias or cluster_name
    args = ["--region", region, "eks", "get-token", "--cluster-name", cluster_name, "--output", "json"]
    exec_config: dict[str, Any] = {
        "apiVersion": EXEC_API_VERSION,
        "command": "aws",
        "args": args,
        "interactiveMode": "IfAvailable",
    }
    if profile:
        exec_config["env"] = [{"name": "AWS_PROFILE", "value": profile}]

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "clusters": [{
            "name": context,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": certificate_authority,
            },
        }],
        "users": [{"name": context, "user": {"exec": exec_config}}],
        "contexts": [{"name": context, "context": {"cluster": context, "user": context}}],
        "current-context": context,
    }


def kubeconfig_for_resource(
    resource: ResourceState,
    region: str,
    alias: str | None = None,
    profile: str | None = None,
) -> dict[str, Any]:
    """Build a kubeconfig from a tracked cluster's outputs.

    Raises:
        KubeconfigError: Wrong kind, or the cluster has not reported an
            endpoint / certificate yet.
    """
    if resource.kind != CLUSTER_KIND:
        raise KubeconfigError(
            f"{resource.address} is a {resource.kind}, not an {CLUSTER_KIND}"
        )

    outputs = resource.all_outputs()
    missing = [k for k in ("endpoint", "certificate_authority") if not outputs.get(k)]
    if missing:
        raise KubeconfigError(f"{resource.address} has no {', '.join(missing)} recorded")

    name = outputs.get("name") or resource.attributes.get("name") or resource.resource_id
    logger.debug("Building kubeconfig for %s (%s)", resource.address, name)
    return build_kubeconfig(
        cluster_name=name,
        endpoint=outputs["endpoint"],
        certificate_authority=outputs["certificate_authority"],
        region=region,
        alias=alias,
        profile=profile,
    )


def kubeconfig_from_state(
    snapshot: StateSnapshot,
    address: str,
    region: str,
    alias: str | None = None,
    profile: str | None = None,
) -> dict[str, Any]:
    resource = snapshot.get(address)
    if resource is None:
        raise KubeconfigError(f"{address} is not tracked in state")
    return kubeconfig_for_resource(resource, region, alias=alias, profile=profile)


def dump_kubeconfig(document: dict[str, Any]) -> str:
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
