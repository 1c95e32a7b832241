"""EC2 provider: EC2 for compute, S3 for the bootstrap state."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from cloudenv.environ import Backends, Environ
from cloudenv.exceptions import ConfigurationError
from cloudenv.providers.base import ProviderBase
from cloudenv.providers.ec2 import clients
from cloudenv.providers.ec2.compute import EC2Compute
from cloudenv.providers.ec2.config import REGIONS, EC2Config
from cloudenv.providers.ec2.images import SSMImageResolver
from cloudenv.providers.ec2.storage import S3Storage


class EC2Provider(ProviderBase[EC2Config]):
    name: ClassVar[str] = "ec2"
    instance_id_accessor: ClassVar[str] = "$(curl -s http://169.254.169.254/1.0/meta-data/instance-id)"
    config_class: ClassVar[type[EC2Config]] = EC2Config

    def check(self, cfg: EC2Config) -> None:
        if not cfg.control_bucket:
            raise ConfigurationError("control-bucket must not be empty")
        if (cfg.access_key is None) != (cfg.secret_key is None):
            raise ConfigurationError("access-key and secret-key must be set together")

    def open(self, env_name: str, config: EC2Config | Mapping[str, Any]) -> Environ:
        cfg = self.validate(config)
        if cfg.region not in REGIONS:
            raise ConfigurationError(
                f"no ec2 endpoint found for region {cfg.region!r}, opening {env_name!r}"
            )
        return super().open(env_name, cfg)

    def connect(self, config: EC2Config) -> Backends:
        return Backends(
            compute=EC2Compute(clients.client(config, "ec2")),
            storage=S3Storage(
                clients.client(config, "s3"),
                config.control_bucket,
                config.region,
                conditional=config.conditional_writes,
            ),
            image_resolver=SSMImageResolver(clients.client(config, "ssm"), config.image_id),
        )
