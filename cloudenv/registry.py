"""Provider registry: backend name -> provider that opens environments.

The registry is a plain value built by the composition root (see
``default_registry``) and passed to whatever opens environments; there
is no process-wide mutable map.

Provider modules are imported lazily so SDK dependencies (boto3, httpx,
cryptography) load only when that backend is actually used.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

from cloudenv.exceptions import UnknownProviderError

if TYPE_CHECKING:
    from cloudenv.environ import Backends, Environ

log = logger.bind(component="registry")


@runtime_checkable
class EnvironConfig(Protocol):
    """Attributes every provider configuration exposes to the engine."""

    @property
    def region(self) -> str: ...

    @property
    def endpoint(self) -> str: ...

    @property
    def instance_type(self) -> str: ...

    @property
    def default_series(self) -> str: ...

    @property
    def authorized_keys(self) -> str | None: ...

    @property
    def authorized_keys_path(self) -> str | None: ...


@runtime_checkable
class EnvironProvider[C: EnvironConfig](Protocol):
    """A cloud backend able to validate configuration and open environments."""

    @property
    def name(self) -> str: ...

    @property
    def instance_id_accessor(self) -> str:
        """Shell expression printing the instance id from inside a machine."""
        ...

    def validate(self, config: C | Mapping[str, Any], old: C | None = None) -> C:
        """Build a validated config; raises ConfigurationError."""
        ...

    def connect(self, config: C) -> Backends:
        """Build the backend clients for ``config``."""
        ...

    def open(self, env_name: str, config: C | Mapping[str, Any]) -> Environ: ...


class ProviderRegistry:
    """Maps backend names to providers; lookups are by exact name."""

    def __init__(self) -> None:
        self._providers: dict[str, EnvironProvider[Any]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, provider: EnvironProvider[Any]) -> None:
        with self._lock:
            if name in self._providers:
                raise ValueError(f"provider {name!r} registered twice")
            self._providers[name] = provider
        log.debug("Registered provider {name}", name=name)

    def lookup(self, name: str) -> EnvironProvider[Any]:
        with self._lock:
            provider = self._providers.get(name)
            available = sorted(self._providers)
        if provider is None:
            raise UnknownProviderError(name, available)
        return provider

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._providers

    def open(self, name: str, env_name: str, config: Mapping[str, Any] | EnvironConfig) -> Environ:
        """Open environment ``env_name`` on the backend registered as ``name``.

        Raises:
            UnknownProviderError: If no provider is registered under ``name``.
            ConfigurationError: If ``config`` is invalid for that backend.
        """
        provider = self.lookup(name)
        log.debug("Opening environment {env} with provider {name}", env=env_name, name=name)
        return provider.open(env_name, config)


def default_registry() -> ProviderRegistry:
    """A fresh registry with every bundled provider registered."""
    from cloudenv.providers.dummy import DummyProvider
    from cloudenv.providers.ec2 import EC2Provider
    from cloudenv.providers.joyent import JoyentProvider

    registry = ProviderRegistry()
    registry.register("ec2", EC2Provider())
    registry.register("joyent", JoyentProvider())
    registry.register("dummy", DummyProvider())
    return registry
