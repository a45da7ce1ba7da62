"""
EKS — clusters and managed node groups.

Create and delete block on the boto3 waiters until the control plane or
node group is ACTIVE / gone. In-place updates are issued one API call per
concern (version, endpoint access, logging, scaling) because EKS rejects
combined updates, and each one is waited on before the next.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from converge.adapters.aws.errors import error_code, is_not_found
from converge.adapters.aws.handler import (
    KindHandler,
    managed_tags,
    owned_by,
    prior_attributes,
    tag_delta,
    user_tags,
)
from converge.adapters.base import OperationContext, ProviderResult

logger = logging.getLogger(__name__)

ALL_LOG_TYPES = ("api", "audit", "authenticator", "controllerManager", "scheduler")


def _logging_config(enabled: list[str]) -> dict[str, Any]:
    disabled = [t for t in ALL_LOG_TYPES if t not in enabled]
    cluster_logging = []
    if enabled:
        cluster_logging.append({"types": list(enabled), "enabled": True})
    if disabled:
        cluster_logging.append({"types": disabled, "enabled": False})
    return {"clusterLogging": cluster_logging}


def _resumable(existing: dict[str, Any], ctx: OperationContext) -> bool:
    """Whether a create that hit ResourceInUseException can adopt ``existing``."""
    return owned_by(existing.get("tags"), ctx) and existing.get("status") not in (
        "DELETING",
        "FAILED",
        "CREATE_FAILED",
    )


def _sync_resource_tags(client: Any, arn: str, old: dict | None, new: dict | None) -> None:
    to_set, to_remove = tag_delta(old, new)
    if to_set:
        client.tag_resource(resourceArn=arn, tags=to_set)
    if to_remove:
        client.untag_resource(resourceArn=arn, tagKeys=to_remove)


class EksClusterHandler(KindHandler):
    kind = "aws_eks_cluster"
    service = "eks"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        name = attrs["name"]
        vpc_config: dict[str, Any] = {"subnetIds": list(attrs["subnet_ids"])}
        if attrs.get("security_group_ids"):
            vpc_config["securityGroupIds"] = list(attrs["security_group_ids"])
        if "endpoint_public_access" in attrs:
            vpc_config["endpointPublicAccess"] = bool(attrs["endpoint_public_access"])
        if "endpoint_private_access" in attrs:
            vpc_config["endpointPrivateAccess"] = bool(attrs["endpoint_private_access"])

        kwargs: dict[str, Any] = {
            "name": name,
            "roleArn": attrs["role_arn"],
            "resourcesVpcConfig": vpc_config,
        }
        if attrs.get("version"):
            kwargs["version"] = str(attrs["version"])
        if attrs.get("enabled_log_types"):
            kwargs["logging"] = _logging_config(list(attrs["enabled_log_types"]))
        kwargs["tags"] = managed_tags(ctx, attrs.get("tags"))

        try:
            client.create_cluster(**kwargs)
            logger.info("Creating EKS cluster %s, waiting for ACTIVE", name)
        except ClientError as e:
            if error_code(e) != "ResourceInUseException":
                raise
            existing = client.describe_cluster(name=name)["cluster"]
            if not _resumable(existing, ctx):
                raise
            logger.info("Resuming create of EKS cluster %s (%s)", name, existing.get("status"))
        self._wait(client, "cluster_active", name=name)
        cluster = client.describe_cluster(name=name)["cluster"]
        return self._result(cluster, attrs)

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        try:
            cluster = client.describe_cluster(name=ctx.resource_id)["cluster"]
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        if cluster.get("status") == "DELETING":
            return None
        return self._result(cluster, self._observed(cluster, prior_attributes(ctx)))

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        name = ctx.resource_id

        if "version" in ctx.changed and attrs.get("version"):
            client.update_cluster_version(name=name, version=str(attrs["version"]))
            logger.info("Upgrading EKS cluster %s to %s", name, attrs["version"])
            self._wait(client, "cluster_active", name=name)

        access_changed = {"endpoint_public_access", "endpoint_private_access"} & set(ctx.changed)
        if access_changed:
            vpc_config = {}
            if "endpoint_public_access" in attrs:
                vpc_config["endpointPublicAccess"] = bool(attrs["endpoint_public_access"])
            if "endpoint_private_access" in attrs:
                vpc_config["endpointPrivateAccess"] = bool(attrs["endpoint_private_access"])
            client.update_cluster_config(name=name, resourcesVpcConfig=vpc_config)
            self._wait(client, "cluster_active", name=name)

        if "enabled_log_types" in ctx.changed:
            client.update_cluster_config(
                name=name, logging=_logging_config(list(attrs.get("enabled_log_types") or []))
            )
            self._wait(client, "cluster_active", name=name)

        cluster = client.describe_cluster(name=name)["cluster"]
        if "tags" in ctx.changed:
            _sync_resource_tags(
                client, cluster["arn"], prior_attributes(ctx).get("tags"), attrs.get("tags")
            )
        return self._result(cluster, attrs)

    def delete(self, client: Any, ctx: OperationContext) -> None:
        try:
            client.delete_cluster(name=ctx.resource_id)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Deleting EKS cluster %s, waiting for removal", ctx.resource_id)
        self._wait(client, "cluster_deleted", name=ctx.resource_id)

    @staticmethod
    def _observed(cluster: dict[str, Any], prior: dict[str, Any]) -> dict[str, Any]:
        vpc = cluster.get("resourcesVpcConfig", {})
        attrs: dict[str, Any] = {
            "name": cluster["name"],
            "role_arn": cluster.get("roleArn"),
            "subnet_ids": list(vpc.get("subnetIds", [])),
            "version": cluster.get("version"),
        }
        if "security_group_ids" in prior:
            attrs["security_group_ids"] = list(vpc.get("securityGroupIds", []))
        if "endpoint_public_access" in prior:
            attrs["endpoint_public_access"] = vpc.get("endpointPublicAccess")
        if "endpoint_private_access" in prior:
            attrs["endpoint_private_access"] = vpc.get("endpointPrivateAccess")
        if "enabled_log_types" in prior:
            enabled: list[str] = []
            for entry in cluster.get("logging", {}).get("clusterLogging", []):
                if entry.get("enabled"):
                    enabled.extend(entry.get("types", []))
            attrs["enabled_log_types"] = enabled
        tags = user_tags(cluster.get("tags"))
        if "tags" in prior or tags:
            attrs["tags"] = tags
        return attrs

    @staticmethod
    def _result(cluster: dict[str, Any], attrs: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            resource_id=cluster["name"],
            outputs={
                "arn": cluster.get("arn"),
                "name": cluster["name"],
                "endpoint": cluster.get("endpoint"),
                "certificate_authority": cluster.get("certificateAuthority", {}).get("data"),
                "version": cluster.get("version"),
            },
            attributes=dict(attrs),
        )


class EksNodeGroupHandler(KindHandler):
    kind = "aws_eks_node_group"
    service = "eks"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        cluster = attrs["cluster_name"]
        name = attrs["node_group_name"]
        kwargs: dict[str, Any] = {
            "clusterName": cluster,
            "nodegroupName": name,
            "nodeRole": attrs["node_role_arn"],
            "subnets": list(attrs["subnet_ids"]),
            "scalingConfig": self._scaling(attrs),
        }
        if attrs.get("instance_types"):
            kwargs["instanceTypes"] = list(attrs["instance_types"])
        if attrs.get("capacity_type"):
            kwargs["capacityType"] = attrs["capacity_type"]
        if attrs.get("disk_size"):
            kwargs["diskSize"] = int(attrs["disk_size"])
        if attrs.get("ami_type"):
            kwargs["amiType"] = attrs["ami_type"]
        if attrs.get("version"):
            kwargs["version"] = str(attrs["version"])
        if attrs.get("labels"):
            kwargs["labels"] = {k: str(v) for k, v in attrs["labels"].items()}
        kwargs["tags"] = managed_tags(ctx, attrs.get("tags"))

        try:
            client.create_nodegroup(**kwargs)
            logger.info("Creating node group %s/%s, waiting for ACTIVE", cluster, name)
        except ClientError as e:
            if error_code(e) != "ResourceInUseException":
                raise
            existing = client.describe_nodegroup(clusterName=cluster, nodegroupName=name)[
                "nodegroup"
            ]
            if not _resumable(existing, ctx):
                raise
            logger.info(
                "Resuming create of node group %s/%s (%s)", cluster, name, existing.get("status")
            )
        self._wait(client, "nodegroup_active", clusterName=cluster, nodegroupName=name)
        nodegroup = client.describe_nodegroup(clusterName=cluster, nodegroupName=name)["nodegroup"]
        return self._result(nodegroup, attrs)

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        cluster, name = _split_nodegroup_id(ctx.resource_id)
        try:
            nodegroup = client.describe_nodegroup(clusterName=cluster, nodegroupName=name)["nodegroup"]
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        if nodegroup.get("status") == "DELETING":
            return None
        return self._result(nodegroup, self._observed(nodegroup, prior_attributes(ctx)))

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        cluster, name = _split_nodegroup_id(ctx.resource_id)
        changed = set(ctx.changed)

        config: dict[str, Any] = {}
        if changed & {"desired_size", "min_size", "max_size"}:
            config["scalingConfig"] = self._scaling(attrs)
        if "labels" in changed:
            old = prior_attributes(ctx).get("labels") or {}
            new = attrs.get("labels") or {}
            config["labels"] = {
                "addOrUpdateLabels": {k: str(v) for k, v in new.items()},
                "removeLabels": sorted(k for k in old if k not in new),
            }
        if config:
            client.update_nodegroup_config(clusterName=cluster, nodegroupName=name, **config)
            self._wait(client, "nodegroup_active", clusterName=cluster, nodegroupName=name)

        if "version" in changed and attrs.get("version"):
            client.update_nodegroup_version(
                clusterName=cluster, nodegroupName=name, version=str(attrs["version"])
            )
            self._wait(client, "nodegroup_active", clusterName=cluster, nodegroupName=name)

        nodegroup = client.describe_nodegroup(clusterName=cluster, nodegroupName=name)["nodegroup"]
        if "tags" in changed:
            _sync_resource_tags(
                client,
                nodegroup["nodegroupArn"],
                prior_attributes(ctx).get("tags"),
                attrs.get("tags"),
            )
        return self._result(nodegroup, attrs)

    def delete(self, client: Any, ctx: OperationContext) -> None:
        cluster, name = _split_nodegroup_id(ctx.resource_id)
        try:
            client.delete_nodegroup(clusterName=cluster, nodegroupName=name)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Deleting node group %s/%s, waiting for removal", cluster, name)
        self._wait(client, "nodegroup_deleted", clusterName=cluster, nodegroupName=name)

    @staticmethod
    def _scaling(attrs: dict[str, Any]) -> dict[str, int]:
        desired = int(attrs.get("desired_size", 1))
        return {
            "desiredSize": desired,
            "minSize": int(attrs.get("min_size", desired)),
            "maxSize": int(attrs.get("max_size", desired)),
        }

    @staticmethod
    def _observed(nodegroup: dict[str, Any], prior: dict[str, Any]) -> dict[str, Any]:
        scaling = nodegroup.get("scalingConfig", {})
        attrs: dict[str, Any] = {
            "cluster_name": nodegroup["clusterName"],
            "node_group_name": nodegroup["nodegroupName"],
            "node_role_arn": nodegroup.get("nodeRole"),
            "subnet_ids": list(nodegroup.get("subnets", [])),
            "desired_size": scaling.get("desiredSize"),
            "min_size": scaling.get("minSize"),
            "max_size": scaling.get("maxSize"),
        }
        optional = {
            "instance_types": nodegroup.get("instanceTypes"),
            "capacity_type": nodegroup.get("capacityType"),
            "disk_size": nodegroup.get("diskSize"),
            "ami_type": nodegroup.get("amiType"),
            "version": nodegroup.get("version"),
            "labels": nodegroup.get("labels") or {},
            "tags": user_tags(nodegroup.get("tags")),
        }
        for key, value in optional.items():
            if key in prior:
                attrs[key] = value
        return attrs

    @staticmethod
    def _result(nodegroup: dict[str, Any], attrs: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            resource_id=f"{nodegroup['clusterName']}:{nodegroup['nodegroupName']}",
            outputs={
                "arn": nodegroup.get("nodegroupArn"),
                "name": nodegroup["nodegroupName"],
                "status": nodegroup.get("status"),
            },
            attributes=dict(attrs),
        )


def _split_nodegroup_id(resource_id: str) -> tuple[str, str]:
    cluster, _, name = resource_id.partition(":")
    return cluster, name
