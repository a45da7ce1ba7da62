"""
EC2 networking — VPCs and subnets.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from converge.adapters.aws.errors import is_not_found
from converge.adapters.aws.handler import (
    MANAGED_TAG,
    KindHandler,
    managed_tags,
    prior_attributes,
    tag_delta,
    tag_dict,
    tag_list,
    user_tags,
)
from converge.adapters.base import OperationContext, ProviderResult

logger = logging.getLogger(__name__)


def _tag_spec(resource_type: str, ctx: OperationContext) -> list[dict[str, Any]]:
    tags = managed_tags(ctx, ctx.attributes.get("tags"))
    return [{"ResourceType": resource_type, "Tags": tag_list(tags)}]


def _owner_filters(ctx: OperationContext, **extra: str) -> list[dict[str, Any]]:
    filters = [{"Name": f"tag:{MANAGED_TAG}", "Values": [ctx.address]}]
    filters += [{"Name": name, "Values": [value]} for name, value in extra.items()]
    return filters


def _sync_tags(client: Any, resource_id: str, old: dict | None, new: dict | None) -> None:
    to_set, to_remove = tag_delta(old, new)
    if to_set:
        client.create_tags(Resources=[resource_id], Tags=tag_list(to_set))
    if to_remove:
        client.delete_tags(Resources=[resource_id], Tags=[{"Key": k} for k in to_remove])


class VpcHandler(KindHandler):
    kind = "aws_vpc"
    service = "ec2"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        vpc = self._find_owned(client, ctx)
        if vpc is None:
            vpc = client.create_vpc(
                CidrBlock=attrs["cidr_block"], TagSpecifications=_tag_spec("vpc", ctx)
            )["Vpc"]
            logger.info("Created VPC %s (%s)", vpc["VpcId"], attrs["cidr_block"])
        else:
            logger.info("Resuming create of VPC %s for %s", vpc["VpcId"], ctx.address)
        vpc_id = vpc["VpcId"]
        self._wait(client, "vpc_available", VpcIds=[vpc_id])

        # DNS flags must be set one per call
        for key, api_name in (
            ("enable_dns_support", "EnableDnsSupport"),
            ("enable_dns_hostnames", "EnableDnsHostnames"),
        ):
            if key in attrs:
                client.modify_vpc_attribute(VpcId=vpc_id, **{api_name: {"Value": bool(attrs[key])}})

        return self._result(vpc_id, vpc.get("OwnerId", ""), attrs)

    @staticmethod
    def _find_owned(client: Any, ctx: OperationContext) -> dict[str, Any] | None:
        """A VPC a previous attempt at this create already made."""
        vpcs = client.describe_vpcs(
            Filters=_owner_filters(ctx, **{"cidr-block": ctx.attributes["cidr_block"]})
        )["Vpcs"]
        return vpcs[0] if vpcs else None

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        try:
            vpcs = client.describe_vpcs(VpcIds=[ctx.resource_id])["Vpcs"]
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        if not vpcs:
            return None

        vpc = vpcs[0]
        attrs: dict[str, Any] = {"cidr_block": vpc["CidrBlock"]}
        tags = user_tags(tag_dict(vpc.get("Tags")))
        if tags or "tags" in prior_attributes(ctx):
            attrs["tags"] = tags
        for key, api_name in (
            ("enable_dns_support", "enableDnsSupport"),
            ("enable_dns_hostnames", "enableDnsHostnames"),
        ):
            if key in prior_attributes(ctx):
                resp = client.describe_vpc_attribute(VpcId=vpc["VpcId"], Attribute=api_name)
                attrs[key] = resp[api_name[0].upper() + api_name[1:]]["Value"]
        return self._result(vpc["VpcId"], vpc.get("OwnerId", ""), attrs)

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        vpc_id = ctx.resource_id
        if "enable_dns_support" in ctx.changed:
            client.modify_vpc_attribute(
                VpcId=vpc_id, EnableDnsSupport={"Value": bool(attrs.get("enable_dns_support", True))}
            )
        if "enable_dns_hostnames" in ctx.changed:
            client.modify_vpc_attribute(
                VpcId=vpc_id,
                EnableDnsHostnames={"Value": bool(attrs.get("enable_dns_hostnames", False))},
            )
        if "tags" in ctx.changed:
            _sync_tags(client, vpc_id, prior_attributes(ctx).get("tags"), attrs.get("tags"))

        owner = ctx.prior.outputs.get("arn", "::::").split(":")[4] if ctx.prior else ""
        return self._result(vpc_id, owner, attrs)

    def delete(self, client: Any, ctx: OperationContext) -> None:
        try:
            client.delete_vpc(VpcId=ctx.resource_id)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Deleted VPC %s", ctx.resource_id)

    def _result(self, vpc_id: str, owner: str, attrs: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            resource_id=vpc_id,
            outputs={
                "arn": f"arn:aws:ec2:{self.region}:{owner}:vpc/{vpc_id}",
                "cidr_block": attrs.get("cidr_block"),
            },
            attributes=dict(attrs),
        )


class SubnetHandler(KindHandler):
    kind = "aws_subnet"
    service = "ec2"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        subnets = client.describe_subnets(
            Filters=_owner_filters(
                ctx, **{"vpc-id": attrs["vpc_id"], "cidr-block": attrs["cidr_block"]}
            )
        )["Subnets"]
        if subnets:
            subnet = subnets[0]
            logger.info("Resuming create of subnet %s for %s", subnet["SubnetId"], ctx.address)
        else:
            subnet = client.create_subnet(
                VpcId=attrs["vpc_id"],
                CidrBlock=attrs["cidr_block"],
                AvailabilityZone=attrs["availability_zone"],
                TagSpecifications=_tag_spec("subnet", ctx),
            )["Subnet"]
            logger.info("Created subnet %s in %s", subnet["SubnetId"], attrs["availability_zone"])
        subnet_id = subnet["SubnetId"]
        self._wait(client, "subnet_available", SubnetIds=[subnet_id])

        if attrs.get("map_public_ip_on_launch"):
            client.modify_subnet_attribute(SubnetId=subnet_id, MapPublicIpOnLaunch={"Value": True})

        return self._result(subnet, attrs)

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        try:
            subnets = client.describe_subnets(SubnetIds=[ctx.resource_id])["Subnets"]
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        if not subnets:
            return None

        subnet = subnets[0]
        attrs: dict[str, Any] = {
            "vpc_id": subnet["VpcId"],
            "cidr_block": subnet["CidrBlock"],
            "availability_zone": subnet["AvailabilityZone"],
        }
        prior = prior_attributes(ctx)
        if "map_public_ip_on_launch" in prior:
            attrs["map_public_ip_on_launch"] = subnet.get("MapPublicIpOnLaunch", False)
        tags = user_tags(tag_dict(subnet.get("Tags")))
        if tags or "tags" in prior:
            attrs["tags"] = tags
        return self._result(subnet, attrs)

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        subnet_id = ctx.resource_id
        if "map_public_ip_on_launch" in ctx.changed:
            client.modify_subnet_attribute(
                SubnetId=subnet_id,
                MapPublicIpOnLaunch={"Value": bool(attrs.get("map_public_ip_on_launch", False))},
            )
        if "tags" in ctx.changed:
            _sync_tags(client, subnet_id, prior_attributes(ctx).get("tags"), attrs.get("tags"))

        arn = ctx.prior.outputs.get("arn", "") if ctx.prior else ""
        return ProviderResult(
            resource_id=subnet_id,
            outputs={
                "arn": arn,
                "availability_zone": attrs.get("availability_zone"),
                "cidr_block": attrs.get("cidr_block"),
            },
            attributes=dict(attrs),
        )

    def delete(self, client: Any, ctx: OperationContext) -> None:
        try:
            client.delete_subnet(SubnetId=ctx.resource_id)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Deleted subnet %s", ctx.resource_id)

    def _result(self, subnet: dict[str, Any], attrs: dict[str, Any]) -> ProviderResult:
        subnet_id = subnet["SubnetId"]
        arn = subnet.get("SubnetArn") or (
            f"arn:aws:ec2:{self.region}:{subnet.get('OwnerId', '')}:subnet/{subnet_id}"
        )
        return ProviderResult(
            resource_id=subnet_id,
            outputs={
                "arn": arn,
                "availability_zone": subnet.get("AvailabilityZone", attrs.get("availability_zone")),
                "cidr_block": subnet.get("CidrBlock", attrs.get("cidr_block")),
            },
            attributes=dict(attrs),
        )
