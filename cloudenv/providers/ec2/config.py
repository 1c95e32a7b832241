"""EC2 provider configuration.

Immutable configuration dataclass plus the table of regions the provider
knows endpoints for.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True, slots=True)
class Region:
    name: str
    ec2_endpoint: str
    s3_endpoint: str


def _region(name: str) -> Region:
    return Region(
        name=name,
        ec2_endpoint=f"https://ec2.{name}.amazonaws.com",
        s3_endpoint=f"https://s3.{name}.amazonaws.com",
    )


REGIONS: Final[dict[str, Region]] = {
    r.name: r
    for r in map(
        _region,
        (
            "us-east-1",
            "us-east-2",
            "us-west-1",
            "us-west-2",
            "eu-west-1",
            "eu-central-1",
            "ap-southeast-1",
            "ap-southeast-2",
            "ap-northeast-1",
            "sa-east-1",
        ),
    )
}


@dataclass(frozen=True, slots=True)
class EC2Config:
    """EC2 environment configuration.

    Credentials left unset are picked up by boto3's usual chain
    (environment variables, shared credentials file, instance profile).

    Args:
        control_bucket: S3 bucket holding the bootstrap state. Required,
            and cannot change once the environment exists.
        region: AWS region. Must be one of REGIONS.
        access_key: AWS access key id.
        secret_key: AWS secret access key.
        instance_type: Instance type of every machine.
        image_id: Fixed AMI. If None, resolves Ubuntu via SSM Parameter Store.
        default_series: Ubuntu series resolved when ``image_id`` is None.
        authorized_keys: SSH public keys installed on machines.
        authorized_keys_path: File to read them from instead.
        conditional_writes: Write the bootstrap state with ``If-None-Match``
            so a concurrent second bootstrap fails instead of overwriting.
    """

    control_bucket: str
    region: str = "us-east-1"
    access_key: str | None = None
    secret_key: str | None = None
    instance_type: str = "t3.small"
    image_id: str | None = None
    default_series: str = "jammy"
    authorized_keys: str | None = None
    authorized_keys_path: str | None = None
    conditional_writes: bool = False

    @property
    def endpoint(self) -> str:
        r = REGIONS.get(self.region)
        return r.ec2_endpoint if r else ""
