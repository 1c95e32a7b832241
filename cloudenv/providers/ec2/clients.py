"""boto3 client factories and botocore error translation."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloudenv.constants import ErrorCode
from cloudenv.exceptions import BackendError

if TYPE_CHECKING:
    from cloudenv.providers.ec2.config import EC2Config

# VPC security groups report these instead of the EC2-Classic codes.
_CODE_ALIASES = {
    "DependencyViolation": ErrorCode.GROUP_IN_USE,
    "InvalidGroupId.NotFound": ErrorCode.GROUP_NOT_FOUND,
    "InvalidGroup.NotFound": ErrorCode.GROUP_NOT_FOUND,
}


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "Unknown")


@contextmanager
def backend_errors(operation: str) -> Iterator[None]:
    """Re-raise botocore failures of ``operation`` as BackendError."""
    try:
        yield
    except ClientError as e:
        code = error_code(e)
        message = e.response.get("Error", {}).get("Message", str(e))
        raise BackendError(_CODE_ALIASES.get(code, code), message, operation) from e
    except BotoCoreError as e:
        raise BackendError(type(e).__name__, str(e), operation) from e


def session(config: EC2Config) -> boto3.session.Session:
    return boto3.session.Session(
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        region_name=config.region,
    )


def client(config: EC2Config, service: str) -> Any:
    """A boto3 client for ``service`` in the configured region."""
    return session(config).client(service, region_name=config.region)
