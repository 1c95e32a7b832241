from __future__ import annotations

import threading

import pytest

from cloudenv.constants import ErrorCode
from cloudenv.environ import Environ
from cloudenv.exceptions import (
    BackendError,
    ConfigurationError,
    DestroyError,
    NotFoundError,
    ParallelError,
)
from cloudenv.providers.dummy import DummyCloud, DummyProvider

from tests.conftest import open_env

pytestmark = [pytest.mark.xdist_group("unit"), pytest.mark.timeout(30)]


def _in_use() -> BackendError:
    return BackendError(ErrorCode.GROUP_IN_USE, "still in use")


class TestLifecycle:
    def test_start_instance_joins_state_server(self, env: Environ, cloud: DummyCloud) -> None:
        info = env.bootstrap()
        worker = env.start_instance(1, info)

        assert worker.id == "i-2"
        assert b"10.0.0.5:2181" in cloud.compute.user_data(worker.id)
        assert {i.id for i in env.instances()} == {"i-1", "i-2"}

    def test_stop_instances(self, env: Environ) -> None:
        info = env.bootstrap()
        worker = env.start_instance(1, info)

        env.stop_instances([worker])

        assert [i.id for i in env.instances()] == ["i-1"]

    def test_stop_nothing(self, env: Environ, cloud: DummyCloud) -> None:
        env.stop_instances([])
        assert cloud.compute.calls == []

    def test_state_info(self, env: Environ) -> None:
        env.bootstrap()
        assert env.state_info().addrs == ("10.0.0.5:2181",)

    def test_state_info_before_bootstrap(self, env: Environ) -> None:
        with pytest.raises(NotFoundError):
            env.state_info()

    def test_environments_sharing_a_cloud_see_the_same_state(self, provider: DummyProvider) -> None:
        first = open_env(provider)
        second = open_env(provider)

        first.bootstrap()

        assert second.state_info().addrs == ("10.0.0.5:2181",)


class TestDestroy:
    def test_tears_everything_down(self, env: Environ, cloud: DummyCloud) -> None:
        info = env.bootstrap()
        env.start_instance(1, info)
        env.start_instance(2, info)
        names = {g.name for g in cloud.compute.security_groups()}
        assert names == {"juju-test1", "juju-test1-0", "juju-test1-1", "juju-test1-2"}
        cloud.compute.fail_next("delete_security_group", _in_use(), _in_use(), target="juju-test1-1")

        assert env.destroy() is None

        assert cloud.compute.calls_to("terminate_instances") == ["i-1,i-2,i-3"]
        assert env.instances() == []
        assert cloud.compute.security_groups() == []
        assert cloud.compute.calls_to("delete_security_group").count("juju-test1-1") == 3
        with pytest.raises(NotFoundError):
            cloud.storage.get("provider-state")

    def test_stages_run_in_order(self, env: Environ, cloud: DummyCloud) -> None:
        env.bootstrap()
        cloud.compute.calls.clear()
        cloud.storage.calls.clear()

        env.destroy()

        ops = [op for op, _ in cloud.compute.calls]
        assert ops.index("terminate_instances") < ops.index("delete_security_group")
        assert cloud.storage.calls_to("delete") == ["provider-state"]

    def test_every_stage_attempted_after_failure(self, env: Environ, cloud: DummyCloud) -> None:
        info = env.bootstrap()
        env.start_instance(1, info)
        cloud.compute.fail_next("terminate_instances", BackendError("Unavailable", "try later"))

        with pytest.raises(DestroyError) as exc:
            env.destroy()

        assert len(exc.value.errors) == 2
        assert isinstance(exc.value.errors[0], BackendError)
        assert isinstance(exc.value.errors[1], ParallelError)
        assert str(exc.value) == str(exc.value.errors[0])
        with pytest.raises(NotFoundError):
            cloud.storage.get("provider-state")
        assert cloud.compute.calls_to("delete_security_group") != []

    def test_unexpected_storage_error_keeps_going(
        self, env: Environ, cloud: DummyCloud, provider: DummyProvider
    ) -> None:
        env.bootstrap()
        other = open_env(provider)
        cloud.storage.fail_next("ensure_container", OSError("connection reset"))

        with pytest.raises(DestroyError) as exc:
            other.destroy()

        assert [type(e) for e in exc.value.errors] == [OSError]
        assert cloud.compute.calls_to("terminate_instances") == ["i-1"]
        assert sorted(cloud.compute.calls_to("delete_security_group")) == ["juju-test1", "juju-test1-0"]

    def test_destroy_empty_environment(self, env: Environ, cloud: DummyCloud) -> None:
        env.destroy()
        assert cloud.compute.calls_to("terminate_instances") == []


class TestStorageCheck:
    def test_runs_once_across_threads(self, env: Environ, cloud: DummyCloud) -> None:
        threads = [threading.Thread(target=env.storage) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cloud.storage.calls_to("ensure_container") == [""]
        assert cloud.storage.container_created

    def test_error_is_cached(self, env: Environ, cloud: DummyCloud) -> None:
        cloud.storage.fail_next("ensure_container", BackendError("AccessDenied", "no bucket for you"))

        with pytest.raises(BackendError, match="no bucket for you"):
            env.storage()
        with pytest.raises(BackendError, match="no bucket for you"):
            env.bootstrap()
        assert len(cloud.storage.calls_to("ensure_container")) == 1
        assert cloud.compute.calls_to("run_instances") == []


class TestConfig:
    def test_name_is_immutable(self, env: Environ) -> None:
        with pytest.raises(AttributeError):
            env.name = "other"  # type: ignore[misc]

    def test_set_config_swaps_snapshot(self, env: Environ) -> None:
        before = env.config
        env.set_config({"authorized-keys": "ssh-rsa AAAA new", "control-bucket": "bucket-test1", "instance-type": "large"})

        assert env.config.instance_type == "large"
        assert before.instance_type == "small"

    def test_control_bucket_cannot_change(self, env: Environ) -> None:
        with pytest.raises(ConfigurationError, match="cannot change control_bucket"):
            env.set_config({"control-bucket": "elsewhere"})

    def test_invalid_config_keeps_old_one(self, env: Environ) -> None:
        with pytest.raises(ConfigurationError):
            env.set_config({"control-bucket": "bucket-test1", "no-such-key": 1})
        assert env.config.control_bucket == "bucket-test1"

    def test_region_and_lookup_params(self, env: Environ) -> None:
        assert env.region().region == "dummy"
        params = env.metadata_lookup_params()
        assert params.series == "jammy"
        assert params.region == "dummy"
        assert params.architectures == ("amd64", "arm")
        assert env.metadata_lookup_params("elsewhere").region == "elsewhere"
