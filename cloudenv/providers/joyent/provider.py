"""Joyent provider: CloudAPI for compute, Manta for the bootstrap state."""

from __future__ import annotations

import dataclasses
import functools
import threading
from dataclasses import dataclass
from typing import ClassVar

import httpx

from cloudenv.bootstrap import ADDRESS_POLICY
from cloudenv.environ import Backends, Environ
from cloudenv.exceptions import ConfigurationError
from cloudenv.providers.base import ProviderBase, RawConfig
from cloudenv.providers.joyent.auth import HTTPSignatureAuth, load_private_key
from cloudenv.providers.joyent.client import JoyentClient
from cloudenv.providers.joyent.compute import JoyentCompute
from cloudenv.providers.joyent.config import JoyentConfig, region_from_url
from cloudenv.providers.joyent.storage import MantaStorage
from cloudenv.retry import DEFAULT_POLICY, RetryPolicy

REQUIRED = ("sdc_url", "manta_url", "manta_user", "key_id", "private_key_path")


@dataclass(frozen=True, slots=True)
class JoyentCredentials:
    """What CloudAPI and Manta requests are signed with."""

    user: str
    key_id: str
    key_file: str
    algorithm: str
    sdc_url: str
    manta_user: str
    manta_url: str


class JoyentEnviron(Environ):
    def credentials(self) -> JoyentCredentials:
        cfg = self.config
        return JoyentCredentials(
            user=cfg.user,
            key_id=cfg.key_id,
            key_file=cfg.private_key_path,
            algorithm=cfg.algorithm,
            sdc_url=cfg.sdc_url,
            manta_user=cfg.manta_user,
            manta_url=cfg.manta_url,
        )


class JoyentProvider(ProviderBase[JoyentConfig]):
    name: ClassVar[str] = "joyent"
    instance_id_accessor: ClassVar[str] = "$(mdata-get sdc:uuid)"
    config_class: ClassVar[type[JoyentConfig]] = JoyentConfig
    environ_class: ClassVar[type[Environ]] = JoyentEnviron

    def __init__(
        self,
        *,
        retry: RetryPolicy = DEFAULT_POLICY,
        poll: RetryPolicy = ADDRESS_POLICY,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(retry=retry, poll=poll)
        self.transport = transport
        self._clients: dict[tuple[str, str, str, str], JoyentClient] = {}
        self._clients_lock = threading.Lock()

    def _build(self, raw: RawConfig) -> JoyentConfig:
        cfg = super()._build(raw)
        if not cfg.region and cfg.sdc_url:
            cfg = dataclasses.replace(cfg, region=region_from_url(cfg.sdc_url))
        return cfg

    def check(self, cfg: JoyentConfig) -> None:
        missing = [f.replace("_", "-") for f in REQUIRED if not getattr(cfg, f)]
        if missing:
            raise ConfigurationError(f"joyent config is missing: {', '.join(missing)}")
        if cfg.algorithm != "rsa-sha256":
            raise ConfigurationError(f"unsupported signing algorithm {cfg.algorithm!r}")
        if not cfg.control_bucket:
            raise ConfigurationError("control-bucket must not be empty")

    def _client(self, url: str, user: str, key_id: str, key_path: str) -> JoyentClient:
        """The shared client for one endpoint and signing identity."""
        k = (url, user, key_id, key_path)
        with self._clients_lock:
            client = self._clients.get(k)
            if client is None:
                auth = HTTPSignatureAuth(user, key_id, load_private_key(key_path))
                client = JoyentClient(url, auth, transport=self.transport)
                self._clients[k] = client
            return client

    def connect(self, config: JoyentConfig) -> Backends:
        sdc = self._client(config.sdc_url, config.user, config.key_id, config.private_key_path)
        manta = self._client(config.manta_url, config.manta_user, config.key_id, config.private_key_path)
        compute = JoyentCompute(sdc, config.user)
        return Backends(
            compute=compute,
            storage=MantaStorage(manta, config.manta_user, config.control_bucket),
            image_resolver=functools.partial(compute.resolve_image, image_id=config.image_id),
        )

    def close(self) -> None:
        """Close every HTTP client this provider opened."""
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()
