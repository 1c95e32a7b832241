"""The Environ façade: one named deployment against one cloud backend.

An Environ may be shared by many threads. Its only local mutable state is
the current configuration and the lazily built backend clients, kept in an
immutable snapshot behind a lock: writers lock, swap and unlock; readers
take the snapshot and work on it without holding the lock, so no backend
call ever runs under it.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from cloudenv.bootstrap import ADDRESS_POLICY, BootstrapSequencer, StateStore
from cloudenv.exceptions import (
    BackendError,
    ConfigurationError,
    DestroyError,
    ProvisioningError,
)
from cloudenv.groups import SecurityGroupManager
from cloudenv.instances import InstanceManager, MachineConfigFactory
from cloudenv.machine import MachineConfig, render_user_data
from cloudenv.retry import DEFAULT_POLICY, RetryPolicy
from cloudenv.ssh_keys import authorized_keys
from cloudenv.types import Instance, StateInfo

if TYPE_CHECKING:
    from cloudenv.backends import ComputeBackend, ImageResolver, StorageBackend
    from cloudenv.registry import EnvironConfig, EnvironProvider


@dataclass(frozen=True, slots=True)
class Backends:
    """Backend clients a provider builds from a configuration."""

    compute: ComputeBackend
    storage: StorageBackend
    image_resolver: ImageResolver


@dataclass(frozen=True, slots=True)
class CloudSpec:
    region: str
    endpoint: str


@dataclass(frozen=True, slots=True)
class MetadataLookupParams:
    """Parameters used to query image metadata for an environment."""

    series: str
    region: str
    endpoint: str
    architectures: tuple[str, ...] = ("amd64", "arm")


@dataclass(frozen=True, slots=True)
class _Snapshot:
    config: EnvironConfig
    backends: Backends | None = None


class Environ:
    """Provisioning and teardown contract of one environment.

    Args:
        name: Environment name; immutable.
        config: Validated provider configuration.
        provider: Provider that validated ``config`` and builds backends.
        retry: Budget for eventual-consistency retries on group operations.
        poll: Budget for waiting on the bootstrap instance address.
    """

    def __init__(
        self,
        name: str,
        config: EnvironConfig,
        provider: EnvironProvider[Any],
        *,
        retry: RetryPolicy = DEFAULT_POLICY,
        poll: RetryPolicy = ADDRESS_POLICY,
    ) -> None:
        self._name = name
        self._provider = provider
        self._retry = retry
        self._poll = poll
        self._lock = threading.Lock()
        self._snap = _Snapshot(config=config)
        self._log = logger.bind(component="environ", env=name)

        self._bucket_lock = threading.Lock()
        self._bucket_checked = False
        self._bucket_error: Exception | None = None

    def __repr__(self) -> str:
        return f"Environ(name={self._name!r}, provider={self._provider.name!r})"

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def provider(self) -> EnvironProvider[Any]:
        return self._provider

    @property
    def config(self) -> EnvironConfig:
        return self._snapshot().config

    def set_config(self, config: EnvironConfig | Mapping[str, Any]) -> None:
        """Validate ``config`` against the current one and swap it in.

        Backend clients are rebuilt on next use.
        """
        new = self._provider.validate(config, old=self.config)
        with self._lock:
            self._snap = _Snapshot(config=new)

    def region(self) -> CloudSpec:
        cfg = self.config
        return CloudSpec(region=cfg.region, endpoint=cfg.endpoint)

    def metadata_lookup_params(self, region: str = "") -> MetadataLookupParams:
        cfg = self.config
        return MetadataLookupParams(
            series=cfg.default_series,
            region=region or cfg.region,
            endpoint=cfg.endpoint,
        )

    def _snapshot(self) -> _Snapshot:
        with self._lock:
            return self._snap

    def _backends(self) -> Backends:
        snap = self._snapshot()
        if snap.backends is not None:
            return snap.backends

        backends = self._provider.connect(snap.config)
        with self._lock:
            # Install only if the config was not swapped meanwhile.
            if self._snap.config is snap.config:
                if self._snap.backends is None:
                    self._snap = replace(self._snap, backends=backends)
                backends = self._snap.backends or backends
        return backends

    # =========================================================================
    # Engine wiring
    # =========================================================================

    def storage(self) -> StorageBackend:
        """Storage backend, after making sure its container exists.

        The container check runs at most once per Environ; its error, if
        any, is remembered and raised again on every later call.
        """
        storage = self._backends().storage
        with self._bucket_lock:
            if not self._bucket_checked:
                self._log.debug("Checking storage container")
                try:
                    storage.ensure_container()
                except Exception as e:
                    self._bucket_error = e
                self._bucket_checked = True
            err = self._bucket_error
        if err is not None:
            raise err
        return storage

    def _groups(self) -> SecurityGroupManager:
        return SecurityGroupManager(self._backends().compute, self._name, policy=self._retry)

    def _instances(self) -> InstanceManager:
        snap = self._snapshot()
        backends = self._backends()
        return InstanceManager(
            backends.compute,
            SecurityGroupManager(backends.compute, self._name, policy=self._retry),
            image_resolver=backends.image_resolver,
            machine_config=self._machine_config_factory(snap.config),
            render=render_user_data,
            instance_type=snap.config.instance_type,
        )

    def _machine_config_factory(self, cfg: EnvironConfig) -> MachineConfigFactory:
        provider = self._provider

        def build(machine_id: str, info: StateInfo | None, master: bool) -> MachineConfig:
            try:
                keys = authorized_keys(cfg.authorized_keys, cfg.authorized_keys_path)
            except ConfigurationError as e:
                raise ConfigurationError(f"cannot get ssh authorized keys: {e}") from e
            return MachineConfig(
                machine_id=machine_id,
                provisioner=master,
                state_server=master,
                state_info=info,
                authorized_keys=keys,
                provider_type=provider.name,
                instance_id_accessor=provider.instance_id_accessor,
            )

        return build

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def bootstrap(self, deadline: float | None = None) -> StateInfo:
        """Start the state server instance and return its address.

        Raises:
            AlreadyBootstrappedError: If a bootstrap state already exists.
            ProvisioningError: If the instance cannot be started.
            InstanceNotFoundError: If the instance vanished while waiting.
            AddressTimeoutError: If it never got an address.
        """
        self._log.info("Bootstrapping environment {name}", name=self._name)
        sequencer = BootstrapSequencer(StateStore(self.storage()), self._instances(), poll=self._poll)
        return sequencer.run(deadline)

    def state_info(self) -> StateInfo:
        """Addresses of the state server recorded in the bootstrap state.

        Raises:
            NotFoundError: If the environment is not bootstrapped.
        """
        st = StateStore(self.storage()).load()
        try:
            insts = self._instances().instances_by_id(st.state_instances)
        except BackendError as e:
            raise ProvisioningError(f"cannot look up state instances: {e}") from e
        return StateInfo.from_instances(insts)

    def start_instance(self, machine_id: int | str, info: StateInfo) -> Instance:
        return self._instances().start_instance(machine_id, info, master=False)

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        self._instances().stop_instances(instances)

    def instances(self) -> list[Instance]:
        return self._instances().instances()

    def destroy(self) -> None:
        """Stop all instances, delete bootstrap state, delete all groups.

        Every stage runs even when an earlier one failed, so a failure
        leaves a recognisable partial teardown.

        Raises:
            DestroyError: Carrying the errors of every failed stage.
        """
        self._log.info("Destroying environment {name}", name=self._name)
        errors: list[Exception] = []
        manager = self._instances()

        try:
            manager.stop_instances(manager.instances())
        except Exception as e:
            self._log.error("Cannot stop instances: {err}", err=e)
            errors.append(e)

        try:
            StateStore(self.storage()).delete()
        except Exception as e:
            self._log.error("Cannot delete bootstrap state: {err}", err=e)
            errors.append(e)

        try:
            manager.groups.destroy_all()
        except Exception as e:
            self._log.error("Cannot delete security groups: {err}", err=e)
            errors.append(e)

        if errors:
            raise DestroyError(errors) from errors[0]
