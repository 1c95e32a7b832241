"""Dummy provider: environments backed by in-memory "clouds"."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import ClassVar

from cloudenv.bootstrap import ADDRESS_POLICY
from cloudenv.environ import Backends
from cloudenv.exceptions import ConfigurationError
from cloudenv.providers.base import ProviderBase
from cloudenv.providers.dummy.backends import DummyCompute, DummyStorage, resolve_image
from cloudenv.providers.dummy.config import DummyConfig
from cloudenv.retry import DEFAULT_POLICY, RetryPolicy


@dataclass(frozen=True, slots=True)
class DummyCloud:
    compute: DummyCompute
    storage: DummyStorage


class DummyProvider(ProviderBase[DummyConfig]):
    """Provider whose clouds live for as long as the provider does.

    Every control bucket is a separate cloud; opening two environments on
    the same bucket makes them share it, as two processes pointing at the
    same account would.
    """

    name: ClassVar[str] = "dummy"
    instance_id_accessor: ClassVar[str] = "$(cat /var/lib/cloud/data/instance-id)"
    config_class: ClassVar[type[DummyConfig]] = DummyConfig

    def __init__(
        self,
        *,
        retry: RetryPolicy = DEFAULT_POLICY,
        poll: RetryPolicy = ADDRESS_POLICY,
    ) -> None:
        super().__init__(retry=retry, poll=poll)
        self._clouds: dict[str, DummyCloud] = {}
        self._clouds_lock = threading.Lock()

    def check(self, cfg: DummyConfig) -> None:
        if not cfg.control_bucket:
            raise ConfigurationError("control-bucket must not be empty")
        if cfg.address_delay < 0:
            raise ConfigurationError("address-delay must be >= 0")

    def cloud(self, cfg: DummyConfig) -> DummyCloud:
        """The in-memory cloud behind ``cfg.control_bucket``."""
        with self._clouds_lock:
            cloud = self._clouds.get(cfg.control_bucket)
            if cloud is None:
                cloud = DummyCloud(
                    compute=DummyCompute(address_delay=cfg.address_delay),
                    storage=DummyStorage(conditional=cfg.conditional_writes),
                )
                self._clouds[cfg.control_bucket] = cloud
            return cloud

    def connect(self, config: DummyConfig) -> Backends:
        cloud = self.cloud(config)
        return Backends(compute=cloud.compute, storage=cloud.storage, image_resolver=resolve_image)
