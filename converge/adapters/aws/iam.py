"""
IAM — roles and managed policy attachments.

IAM is global; role names are the resource ids. Attachments are keyed
``<role>/<policy_arn>`` since IAM has no attachment id of its own.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import unquote

from botocore.exceptions import ClientError

from converge.adapters.aws.errors import error_code, is_not_found
from converge.adapters.aws.handler import (
    KindHandler,
    managed_tags,
    owned_by,
    prior_attributes,
    tag_delta,
    tag_dict,
    tag_list,
    user_tags,
)
from converge.adapters.base import OperationContext, ProviderResult

logger = logging.getLogger(__name__)


def policy_document(policy: Any) -> str:
    """Policies may be written as mappings in YAML; IAM wants a JSON string."""
    if isinstance(policy, str):
        return policy
    return json.dumps(policy, sort_keys=True)


def _parse_policy(document: Any) -> Any:
    # boto3 usually decodes this already; older endpoints return it URL-encoded
    if isinstance(document, str):
        try:
            return json.loads(unquote(document))
        except json.JSONDecodeError:
            return document
    return document


class IamRoleHandler(KindHandler):
    kind = "aws_iam_role"
    service = "iam"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        kwargs: dict[str, Any] = {
            "RoleName": attrs["role_name"],
            "AssumeRolePolicyDocument": policy_document(attrs["assume_role_policy"]),
        }
        if attrs.get("description"):
            kwargs["Description"] = attrs["description"]
        if attrs.get("path"):
            kwargs["Path"] = attrs["path"]
        kwargs["Tags"] = tag_list(managed_tags(ctx, attrs.get("tags")))

        try:
            role = client.create_role(**kwargs)["Role"]
            logger.info("Created IAM role %s", role["RoleName"])
        except ClientError as e:
            if error_code(e) != "EntityAlreadyExists":
                raise
            # left behind by an earlier attempt at this same create?
            role = client.get_role(RoleName=attrs["role_name"])["Role"]
            if not owned_by(tag_dict(role.get("Tags")), ctx):
                raise
            logger.info("Resuming create of IAM role %s", role["RoleName"])
        self._wait(client, "role_exists", RoleName=role["RoleName"])
        return self._result(role, attrs)

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        try:
            role = client.get_role(RoleName=ctx.resource_id)["Role"]
        except ClientError as e:
            if is_not_found(e):
                return None
            raise

        prior = prior_attributes(ctx)
        attrs: dict[str, Any] = {
            "role_name": role["RoleName"],
            "assume_role_policy": _parse_policy(role.get("AssumeRolePolicyDocument")),
        }
        if "description" in prior or role.get("Description"):
            attrs["description"] = role.get("Description", "")
        if "path" in prior:
            attrs["path"] = role.get("Path", "/")
        tags = user_tags(tag_dict(role.get("Tags")))
        if tags or "tags" in prior:
            attrs["tags"] = tags
        return self._result(role, attrs)

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        attrs = ctx.attributes
        name = ctx.resource_id
        if "assume_role_policy" in ctx.changed:
            client.update_assume_role_policy(
                RoleName=name, PolicyDocument=policy_document(attrs["assume_role_policy"])
            )
        if "description" in ctx.changed:
            client.update_role(RoleName=name, Description=attrs.get("description", ""))
        if "tags" in ctx.changed:
            to_set, to_remove = tag_delta(prior_attributes(ctx).get("tags"), attrs.get("tags"))
            if to_set:
                client.tag_role(RoleName=name, Tags=tag_list(to_set))
            if to_remove:
                client.untag_role(RoleName=name, TagKeys=to_remove)

        role = client.get_role(RoleName=name)["Role"]
        return self._result(role, attrs)

    def delete(self, client: Any, ctx: OperationContext) -> None:
        try:
            client.delete_role(RoleName=ctx.resource_id)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Deleted IAM role %s", ctx.resource_id)

    @staticmethod
    def _result(role: dict[str, Any], attrs: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            resource_id=role["RoleName"],
            outputs={"arn": role["Arn"], "name": role["RoleName"]},
            attributes=dict(attrs),
        )


class RolePolicyAttachmentHandler(KindHandler):
    kind = "aws_iam_role_policy_attachment"
    service = "iam"

    def create(self, client: Any, ctx: OperationContext) -> ProviderResult:
        role = ctx.attributes["role"]
        policy_arn = ctx.attributes["policy_arn"]
        client.attach_role_policy(RoleName=role, PolicyArn=policy_arn)
        logger.info("Attached %s to role %s", policy_arn, role)
        return self._result(role, policy_arn)

    def read(self, client: Any, ctx: OperationContext) -> ProviderResult | None:
        role, policy_arn = _split_attachment_id(ctx.resource_id)
        try:
            paginator = client.get_paginator("list_attached_role_policies")
            for page in paginator.paginate(RoleName=role):
                for attached in page.get("AttachedPolicies", []):
                    if attached["PolicyArn"] == policy_arn:
                        return self._result(role, policy_arn)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        return None

    def update(self, client: Any, ctx: OperationContext) -> ProviderResult:
        # Every attribute is force_new; nothing to patch in place
        role, policy_arn = _split_attachment_id(ctx.resource_id)
        return self._result(role, policy_arn)

    def delete(self, client: Any, ctx: OperationContext) -> None:
        role, policy_arn = _split_attachment_id(ctx.resource_id)
        try:
            client.detach_role_policy(RoleName=role, PolicyArn=policy_arn)
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        logger.info("Detached %s from role %s", policy_arn, role)

    @staticmethod
    def _result(role: str, policy_arn: str) -> ProviderResult:
        return ProviderResult(
            resource_id=f"{role}/{policy_arn}",
            outputs={"role": role, "policy_arn": policy_arn},
            attributes={"role": role, "policy_arn": policy_arn},
        )


def _split_attachment_id(resource_id: str) -> tuple[str, str]:
    role, _, policy_arn = resource_id.partition("/")
    return role, policy_arn
