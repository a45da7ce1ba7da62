"""AWS provider (boto3)."""

from converge.adapters.aws.provider import AwsProvider

__all__ = ["AwsProvider"]
