from __future__ import annotations

import pytest

from cloudenv.constants import ErrorCode
from cloudenv.exceptions import BackendError, ParallelError, ProvisioningError
from cloudenv.groups import SecurityGroupManager, env_group_name, machine_group_name
from cloudenv.providers.dummy import DummyCompute
from cloudenv.retry import RetryPolicy
from cloudenv.types import IPPermission

pytestmark = [pytest.mark.xdist_group("unit")]


def _not_found() -> BackendError:
    return BackendError(ErrorCode.GROUP_NOT_FOUND, "not visible yet")


def _in_use() -> BackendError:
    return BackendError(ErrorCode.GROUP_IN_USE, "still in use")


@pytest.fixture
def compute() -> DummyCompute:
    return DummyCompute()


@pytest.fixture
def groups(compute: DummyCompute) -> SecurityGroupManager:
    return SecurityGroupManager(compute, "test1", policy=RetryPolicy.immediate(5))


class TestNaming:
    def test_environment_group(self) -> None:
        assert env_group_name("test1") == "juju-test1"

    def test_machine_group(self) -> None:
        assert machine_group_name("test1", 3) == "juju-test1-3"

    def test_manager_names(self, groups: SecurityGroupManager) -> None:
        assert groups.group_name() == "juju-test1"
        assert groups.machine_group_name("0") == "juju-test1-0"


class TestEnsureGroups:
    def test_creates_both_groups(self, groups: SecurityGroupManager, compute: DummyCompute) -> None:
        env_group, machine_group = groups.ensure_groups(0)

        assert env_group.name == "juju-test1"
        assert machine_group.name == "juju-test1-0"
        assert env_group.id and machine_group.id
        assert {g.name for g in compute.security_groups()} == {"juju-test1", "juju-test1-0"}

    def test_environment_group_gets_baseline_ingress(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)

        perms = compute.permissions("juju-test1")
        assert IPPermission("tcp", 2181, 2181, ("0.0.0.0/0",)) in perms
        assert IPPermission("tcp", 22, 22, ("0.0.0.0/0",)) in perms
        assert compute.permissions("juju-test1-0") == []

    def test_second_call_reuses_environment_group(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        first_env, first_machine = groups.ensure_groups(0)
        second_env, second_machine = groups.ensure_groups(0)

        assert second_env == first_env
        assert second_machine.id != first_machine.id
        assert compute.calls_to("create_security_group").count("juju-test1") == 1
        assert compute.calls_to("authorize_ingress") == ["juju-test1"]
        names = [g.name for g in compute.security_groups()]
        assert names.count("juju-test1") == 1
        assert names.count("juju-test1-0") == 1

    def test_stale_machine_group_rules_do_not_survive(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        _, machine_group = groups.ensure_groups(0)
        compute.authorize_ingress(machine_group, [IPPermission("tcp", 80, 80, ("0.0.0.0/0",))])

        groups.ensure_groups(0)

        assert compute.calls_to("delete_security_group") == ["juju-test1-0"]
        assert compute.permissions("juju-test1-0") == []

    def test_different_machines_get_distinct_groups(self, groups: SecurityGroupManager) -> None:
        _, g0 = groups.ensure_groups(0)
        _, g1 = groups.ensure_groups(1)
        assert g0.name != g1.name

    def test_authorize_retried_until_group_visible(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        compute.fail_next("authorize_ingress", _not_found(), _not_found())

        groups.ensure_groups(0)

        assert len(compute.calls_to("authorize_ingress")) == 3

    def test_authorize_gives_up_after_budget(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        compute.fail_next("authorize_ingress", *(_not_found() for _ in range(5)))

        with pytest.raises(ProvisioningError, match="cannot authorize security group"):
            groups.ensure_groups(0)
        assert len(compute.calls_to("authorize_ingress")) == 5

    def test_listing_failure_is_wrapped(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        compute.fail_next("security_groups", BackendError("AuthFailure", "denied"))

        with pytest.raises(ProvisioningError, match="cannot get security groups") as exc:
            groups.ensure_groups(0)
        assert isinstance(exc.value.__cause__, BackendError)

    def test_stale_group_delete_failure_is_wrapped(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)
        compute.fail_next("delete_security_group", _in_use())

        with pytest.raises(ProvisioningError, match="cannot delete old security group 'juju-test1-0'"):
            groups.ensure_groups(0)


class TestDestroyAll:
    def test_deletes_environment_and_machine_groups_only(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)
        groups.ensure_groups(1)
        compute.create_security_group("juju-test10", "other environment")
        compute.create_security_group("juju-other-0", "other environment")

        groups.destroy_all()

        assert {g.name for g in compute.security_groups()} == {"juju-test10", "juju-other-0"}

    def test_retries_groups_still_in_use(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)
        groups.ensure_groups(1)
        compute.fail_next("delete_security_group", _in_use(), _in_use(), target="juju-test1-1")

        groups.destroy_all()

        assert compute.calls_to("delete_security_group").count("juju-test1-1") == 3
        assert compute.security_groups() == []

    def test_persistent_failure_is_reported_after_all_deletions(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)
        groups.ensure_groups(1)
        compute.fail_next(
            "delete_security_group", *(_in_use() for _ in range(5)), target="juju-test1-1"
        )

        with pytest.raises(ParallelError) as exc:
            groups.destroy_all()

        assert len(exc.value.errors) == 1
        assert "juju-test1-1" in str(exc.value.errors[0])
        assert [g.name for g in compute.security_groups()] == ["juju-test1-1"]

    def test_group_already_gone_counts_as_deleted(
        self, groups: SecurityGroupManager, compute: DummyCompute
    ) -> None:
        groups.ensure_groups(0)
        compute.fail_next("delete_security_group", _not_found(), target="juju-test1-0")

        groups.destroy_all()

    def test_nothing_to_delete(self, groups: SecurityGroupManager, compute: DummyCompute) -> None:
        groups.destroy_all()
        assert compute.calls_to("delete_security_group") == []
