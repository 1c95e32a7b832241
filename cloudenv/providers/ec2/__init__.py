"""AWS EC2 provider for cloudenv.

Example:
    from cloudenv.providers.ec2 import EC2Provider

    env = EC2Provider().open("prod", {"control-bucket": "juju-prod-state", "region": "us-west-2"})
"""

from cloudenv.providers.ec2.config import REGIONS, EC2Config
from cloudenv.providers.ec2.provider import EC2Provider

__all__ = ["REGIONS", "EC2Config", "EC2Provider"]
