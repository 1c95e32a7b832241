"""Bootstrap: turn an empty environment into a running state server.

The sequence runs strictly in order and never resumes across processes:

1. refuse if a bootstrap state already exists;
2. start the bootstrap instance;
3. record its id in the bootstrap state (stopping it again on failure);
4. poll until the instance has a network address;
5. return the state server address.

Two concurrent bootstraps against a storage backend without conditional
writes can both pass step 1. That race is accepted; backends that support
``put_if_absent`` close it in step 3.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger

from cloudenv.backends import StorageBackend
from cloudenv.constants import ADDRESS_POLL_ATTEMPTS, ADDRESS_POLL_DELAY, STATE_FILE
from cloudenv.exceptions import (
    AddressTimeoutError,
    AlreadyBootstrappedError,
    CloudEnvError,
    InstanceNotFoundError,
    NotFoundError,
    ProvisioningError,
)
from cloudenv.instances import InstanceManager
from cloudenv.retry import RetryPolicy
from cloudenv.types import BootstrapState, Instance, StateInfo

log = logger.bind(component="bootstrap")

ADDRESS_POLICY = RetryPolicy(max_attempts=ADDRESS_POLL_ATTEMPTS, delay=ADDRESS_POLL_DELAY)


class StateStore:
    """Reads and writes the bootstrap state in an environment's storage."""

    def __init__(self, storage: StorageBackend, key: str = STATE_FILE) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> BootstrapState:
        """Raises NotFoundError when the environment is not bootstrapped."""
        return BootstrapState.from_bytes(self.storage.get(self.key))

    def save(self, state: BootstrapState) -> None:
        self.storage.put(self.key, state.to_bytes())

    def create(self, state: BootstrapState) -> None:
        """Write ``state`` only if none exists yet, where storage allows it.

        Raises:
            AlreadyBootstrappedError: If another bootstrap got there first.
        """
        if not self.storage.supports_conditional_put:
            self.save(state)
            return
        if not self.storage.put_if_absent(self.key, state.to_bytes()):
            raise AlreadyBootstrappedError()

    def delete(self) -> None:
        self.storage.delete(self.key)


class BootstrapSequencer:
    """Runs the one-time bootstrap of an environment."""

    def __init__(
        self,
        store: StateStore,
        instances: InstanceManager,
        *,
        poll: RetryPolicy = ADDRESS_POLICY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.instances = instances
        self.poll = poll
        self.clock = clock

    def run(self, deadline: float | None = None) -> StateInfo:
        """Bootstrap and return the state server address.

        Args:
            deadline: Optional ``clock()`` value after which waiting for the
                instance address gives up early.
        """
        self._check_not_bootstrapped()

        try:
            inst = self.instances.start_instance(0, None, master=True)
        except CloudEnvError as e:
            raise ProvisioningError(f"cannot start bootstrap instance: {e}") from e

        self._persist(inst)

        inst = self._await_address(inst, deadline)
        info = StateInfo.from_instances([inst])
        log.info("Bootstrap complete, state server at {addrs}", addrs=list(info.addrs))
        return info

    def _check_not_bootstrapped(self) -> None:
        try:
            self.store.load()
        except NotFoundError:
            return
        raise AlreadyBootstrappedError()

    def _persist(self, inst: Instance) -> None:
        try:
            self.store.create(BootstrapState(state_instances=(inst.id,)))
        except Exception:
            log.warning("Saving bootstrap state failed, stopping instance {id}", id=inst.id)
            try:
                self.instances.stop_instances([inst])
            except Exception as stop_err:
                # The persist error is the one the caller needs to see.
                log.opt(exception=stop_err).error(
                    "Cannot stop bootstrap instance {id}", id=inst.id
                )
            raise

    def _await_address(self, inst: Instance, deadline: float | None) -> Instance:
        for n in range(self.poll.max_attempts):
            if inst.addressable:
                return inst
            if deadline is not None and self.clock() >= deadline:
                break
            log.debug(
                "Waiting for address of {id} ({n}/{max})",
                id=inst.id, n=n + 1, max=self.poll.max_attempts,
            )
            self.poll.sleep(self.poll.delay)
            inst = self._refresh(inst)

        if inst.addressable:
            return inst
        raise AddressTimeoutError(inst.id, self.poll.max_attempts)

    def _refresh(self, inst: Instance) -> Instance:
        for candidate in self.instances.instances():
            if candidate.id == inst.id:
                return candidate
        raise InstanceNotFoundError(inst.id)
