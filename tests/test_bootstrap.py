from __future__ import annotations

import json

import pytest

from cloudenv.bootstrap import BootstrapSequencer, StateStore
from cloudenv.environ import Environ
from cloudenv.exceptions import (
    AddressTimeoutError,
    AlreadyBootstrappedError,
    BackendError,
    CloudEnvError,
    InstanceNotFoundError,
    NotFoundError,
    ProvisioningError,
)
from cloudenv.providers.dummy import DummyCloud, DummyProvider, DummyStorage
from cloudenv.retry import RetryPolicy
from cloudenv.types import BootstrapState

from tests.conftest import make_provider, open_env

pytestmark = [pytest.mark.xdist_group("unit")]


class TestBootstrap:
    def test_end_to_end(self, env: Environ, cloud: DummyCloud) -> None:
        info = env.bootstrap()

        assert info.addrs == ("10.0.0.5:2181",)
        assert json.loads(cloud.storage.get("provider-state")) == {"state-instances": ["i-1"]}
        assert cloud.compute.calls_to("run_instances") != []

    def test_second_bootstrap_fails(self, env: Environ, cloud: DummyCloud) -> None:
        env.bootstrap()

        with pytest.raises(AlreadyBootstrappedError, match="already bootstrapped"):
            env.bootstrap()
        assert len(cloud.compute.calls_to("run_instances")) == 1

    def test_existing_state_prevents_any_instance_start(
        self, env: Environ, cloud: DummyCloud
    ) -> None:
        cloud.storage.put("provider-state", BootstrapState(("i-99",)).to_bytes())

        with pytest.raises(AlreadyBootstrappedError):
            env.bootstrap()
        assert cloud.compute.calls_to("run_instances") == []

    def test_other_read_errors_abort(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.storage.fail_next("get", BackendError("AccessDenied", "forbidden"))

        with pytest.raises(BackendError, match="forbidden"):
            env.bootstrap()
        assert cloud.compute.calls_to("run_instances") == []

    def test_waits_for_address(self) -> None:
        provider = make_provider()
        env = open_env(provider, address_delay=3)
        cloud = provider.cloud(env.config)

        assert env.bootstrap().addrs == ("10.0.0.5:2181",)
        assert len(cloud.compute.calls_to("instances")) == 3

    def test_start_failure_persists_nothing(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.compute.fail_next("run_instances", BackendError("Unsupported", "no capacity"))

        with pytest.raises(ProvisioningError, match="cannot start bootstrap instance"):
            env.bootstrap()
        with pytest.raises(NotFoundError):
            cloud.storage.get("provider-state")


class TestCompensatingCleanup:
    def test_persist_failure_stops_instance(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.storage.fail_next("put", BackendError("InternalError", "write failed"))

        with pytest.raises(BackendError, match="write failed"):
            env.bootstrap()
        assert cloud.compute.calls_to("terminate_instances") == ["i-1"]

    def test_persist_error_wins_over_stop_error(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.storage.fail_next("put", BackendError("InternalError", "write failed"))
        cloud.compute.fail_next("terminate_instances", BackendError("Unavailable", "stop failed"))

        with pytest.raises(BackendError) as exc:
            env.bootstrap()
        assert exc.value.code == "InternalError"
        assert cloud.compute.calls_to("terminate_instances") == ["i-1"]


class TestAddressWait:
    def test_instance_vanishing_is_not_found(self) -> None:
        clouds: list[DummyCloud] = []

        def terminate_while_waiting(_: float) -> None:
            clouds[0].compute.terminate_instances(["i-1"])

        provider = make_provider(poll=RetryPolicy(max_attempts=20, delay=0.0, sleep=terminate_while_waiting))
        env = open_env(provider, address_delay=10)
        clouds.append(provider.cloud(env.config))

        with pytest.raises(InstanceNotFoundError) as exc:
            env.bootstrap()
        assert exc.value.instance_id == "i-1"

    def test_budget_exhaustion_is_timeout(self) -> None:
        provider = make_provider(polls=3)
        env = open_env(provider, address_delay=100)

        with pytest.raises(AddressTimeoutError) as exc:
            env.bootstrap()
        assert exc.value.attempts == 3
        assert not isinstance(exc.value, InstanceNotFoundError)

    def test_deadline_stops_waiting(self, provider: DummyProvider) -> None:
        env = open_env(provider, address_delay=100)
        cloud = provider.cloud(env.config)
        sequencer = BootstrapSequencer(
            StateStore(cloud.storage),
            env._instances(),
            poll=RetryPolicy.immediate(20),
            clock=lambda: 100.0,
        )

        with pytest.raises(AddressTimeoutError):
            sequencer.run(deadline=50.0)
        assert cloud.compute.calls_to("instances") == []


class TestConditionalWrites:
    def test_lost_race_is_already_bootstrapped(self) -> None:
        provider = make_provider()
        env = open_env(provider, conditional_writes=True)
        cloud = provider.cloud(env.config)
        cloud.storage.put("provider-state", BootstrapState(("i-99",)).to_bytes())

        # The state was written by another bootstrapper after our check read it.
        cloud.storage.fail_next("get", NotFoundError("provider-state"))

        with pytest.raises(AlreadyBootstrappedError):
            env.bootstrap()
        assert cloud.compute.calls_to("terminate_instances") == ["i-1"]
        assert BootstrapState.from_bytes(cloud.storage.get("provider-state")).state_instances == ("i-99",)


class TestStateStore:
    def test_load_missing(self) -> None:
        with pytest.raises(NotFoundError):
            StateStore(DummyStorage()).load()

    def test_save_and_load(self) -> None:
        store = StateStore(DummyStorage())
        store.save(BootstrapState(("i-1", "i-2")))
        assert store.load().state_instances == ("i-1", "i-2")

    @pytest.mark.parametrize("data", [b"{not json", b"[]", b"\xff\xfe", b'{"state-instances": "i-1"}'])
    def test_corrupt_state(self, data: bytes) -> None:
        storage = DummyStorage()
        storage.put("provider-state", data)

        with pytest.raises(CloudEnvError, match="cannot parse bootstrap state"):
            StateStore(storage).load()

    def test_corrupt_state_blocks_bootstrap(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.storage.put("provider-state", b"[]")

        with pytest.raises(CloudEnvError, match="cannot parse bootstrap state"):
            env.bootstrap()
        assert cloud.compute.calls_to("run_instances") == []

    def test_delete_missing_is_fine(self) -> None:
        StateStore(DummyStorage()).delete()

    def test_create_without_conditional_support_overwrites(self) -> None:
        storage = DummyStorage()
        store = StateStore(storage)
        store.save(BootstrapState(("i-1",)))
        store.create(BootstrapState(("i-2",)))
        assert store.load().state_instances == ("i-2",)
        assert storage.calls_to("put_if_absent") == []
