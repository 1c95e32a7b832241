"""Security group lifecycle for an environment.

Every machine is launched into two groups: the environment group, shared
by all machines and used to tell this environment's instances apart from
anything else in the account, and a per-machine group holding that
machine's firewall rules. Names follow ``juju-<env>`` and
``juju-<env>-<machine id>``; bulk cleanup relies on that prefix.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from cloudenv.backends import ComputeBackend
from cloudenv.conc import Parallel
from cloudenv.constants import (
    ANYWHERE,
    GROUP_DELETE_CONCURRENCY,
    GROUP_PREFIX,
    SSH_PORT,
    STATE_PORT,
    ErrorCode,
)
from cloudenv.exceptions import BackendError, ProvisioningError
from cloudenv.retry import DEFAULT_POLICY, RetryPolicy, attempt
from cloudenv.types import IPPermission, SecurityGroup

log = logger.bind(component="groups")

BASELINE_INGRESS: tuple[IPPermission, ...] = (
    IPPermission("tcp", STATE_PORT, STATE_PORT, (ANYWHERE,)),
    IPPermission("tcp", SSH_PORT, SSH_PORT, (ANYWHERE,)),
)


def env_group_name(env_name: str) -> str:
    return GROUP_PREFIX + env_name


def machine_group_name(env_name: str, machine_id: int | str) -> str:
    return f"{env_group_name(env_name)}-{machine_id}"


class SecurityGroupManager:
    """Creates, reuses and deletes the groups of one environment."""

    def __init__(
        self,
        compute: ComputeBackend,
        env_name: str,
        *,
        policy: RetryPolicy = DEFAULT_POLICY,
        max_workers: int = GROUP_DELETE_CONCURRENCY,
    ) -> None:
        self.compute = compute
        self.env_name = env_name
        self.policy = policy
        self.max_workers = max_workers

    def group_name(self) -> str:
        return env_group_name(self.env_name)

    def machine_group_name(self, machine_id: int | str) -> str:
        return machine_group_name(self.env_name, machine_id)

    def ensure_groups(self, machine_id: int | str) -> tuple[SecurityGroup, SecurityGroup]:
        """Set up the groups for a machine about to be launched.

        The environment group is created on first use and kept. The machine
        group is always recreated, so rules left by an earlier machine that
        had the same id never carry over.

        Returns:
            (environment group, machine group), both with provider ids.
        """
        env_group = SecurityGroup(self.group_name())
        machine_group = SecurityGroup(self.machine_group_name(machine_id))

        try:
            existing = self.compute.security_groups([env_group.name, machine_group.name])
        except BackendError as e:
            raise ProvisioningError(f"cannot get security groups: {e}") from e

        for g in existing:
            if g.name == env_group.name:
                env_group = g
            elif g.name == machine_group.name:
                machine_group = g

        if not env_group.exists:
            env_group = self._create_env_group(env_group.name)

        if machine_group.exists:
            log.info("Deleting stale machine group {name}", name=machine_group.name)
            try:
                self.compute.delete_security_group(machine_group)
            except BackendError as e:
                raise ProvisioningError(
                    f"cannot delete old security group {machine_group.name!r}: {e}"
                ) from e

        description = f"juju group for {self.env_name} machine {machine_id}"
        try:
            machine_group = self.compute.create_security_group(machine_group.name, description)
        except BackendError as e:
            raise ProvisioningError(
                f"cannot create machine group {machine_group.name!r}: {e}"
            ) from e

        return env_group, machine_group

    def _create_env_group(self, name: str) -> SecurityGroup:
        log.info("Creating security group {name}", name=name)
        try:
            group = self.compute.create_security_group(name, f"juju group for {self.env_name}")
        except BackendError as e:
            raise ProvisioningError(f"cannot create juju security group: {e}") from e

        log.debug("Authorizing security group {name} ({id})", name=group.name, id=group.id)
        try:
            attempt(
                ErrorCode.GROUP_NOT_FOUND,
                lambda: self.compute.authorize_ingress(group, BASELINE_INGRESS),
                policy=self.policy,
            )
        except BackendError as e:
            raise ProvisioningError(f"cannot authorize security group: {e}") from e
        return group

    def owned_groups(self) -> list[SecurityGroup]:
        """All groups belonging to this environment, machine groups included."""
        name = self.group_name()
        prefix = name + "-"
        try:
            groups = self.compute.security_groups()
        except BackendError as e:
            raise ProvisioningError(f"cannot list security groups: {e}") from e
        return [g for g in groups if g.name == name or g.name.startswith(prefix)]

    def delete_group(self, group: SecurityGroup) -> None:
        """Delete ``group``, retrying while terminating instances still use it."""

        def delete() -> None:
            try:
                self.compute.delete_security_group(group)
            except BackendError as e:
                if e.code != ErrorCode.GROUP_NOT_FOUND:
                    raise
                log.debug("Group {name} already gone", name=group.name)

        try:
            attempt(ErrorCode.GROUP_IN_USE, delete, policy=self.policy)
        except BackendError as e:
            raise ProvisioningError(f"cannot delete juju security group {group.name!r}: {e}") from e

    def destroy_all(self) -> None:
        """Delete every group of this environment concurrently.

        Raises:
            ParallelError: If one or more deletions failed.
        """
        groups = self.owned_groups()
        log.info("Deleting {n} security groups", n=len(groups))
        self._delete_all(groups)

    def _delete_all(self, groups: Sequence[SecurityGroup]) -> None:
        p = Parallel(self.max_workers)
        for g in groups:
            p.do(lambda g=g: self.delete_group(g))
        p.wait()
