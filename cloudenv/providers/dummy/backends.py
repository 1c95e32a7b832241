"""In-memory compute and storage backends.

Both backends record every call in ``calls`` and accept injected faults,
so tests can script eventual-consistency errors such as a group that is
still in use for a couple of attempts.

Example:
    >>> compute = DummyCompute()
    >>> compute.fail_next("delete_security_group", in_use, in_use, target="juju-test1-1")
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from loguru import logger

from cloudenv.constants import ErrorCode, InstanceState
from cloudenv.exceptions import BackendError, NotFoundError
from cloudenv.types import ImageConstraint, ImageSpec, Instance, IPPermission, RunSpec, SecurityGroup

log = logger.bind(component="dummy")


class _Faults:
    """Queued errors raised by the next matching calls."""

    def __init__(self) -> None:
        self._queue: deque[tuple[str, str | None, Exception]] = deque()

    def add(self, operation: str, errors: Sequence[Exception], target: str | None) -> None:
        self._queue.extend((operation, target, e) for e in errors)

    def pop(self, operation: str, target: str) -> Exception | None:
        for entry in self._queue:
            op, tgt, err = entry
            if op == operation and (tgt is None or tgt == target):
                self._queue.remove(entry)
                return err
        return None


class _Recorder:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._faults = _Faults()
        self.calls: list[tuple[str, str]] = []

    def fail_next(self, operation: str, *errors: Exception, target: str | None = None) -> None:
        """Make the next calls of ``operation`` (on ``target``) raise ``errors``."""
        with self._lock:
            self._faults.add(operation, errors, target)

    def calls_to(self, operation: str) -> list[str]:
        with self._lock:
            return [target for op, target in self.calls if op == operation]

    def _record(self, operation: str, target: str = "") -> None:
        """Record a call; caller holds the lock."""
        self.calls.append((operation, target))
        log.trace("{op} {target}", op=operation, target=target)
        err = self._faults.pop(operation, target)
        if err is not None:
            raise err


@dataclass(slots=True)
class _Group:
    name: str
    id: str
    description: str
    perms: list[IPPermission] = field(default_factory=list)


@dataclass(slots=True)
class _Machine:
    instance: Instance
    groups: tuple[str, ...]
    user_data: bytes
    listings_until_address: int


class DummyCompute(_Recorder):
    """Instances and security groups kept in memory.

    Terminated instances stay listed with state ``terminated``; a group
    attached to a live instance cannot be deleted (``InvalidGroup.InUse``).
    """

    def __init__(self, address_delay: int = 0) -> None:
        super().__init__()
        self.address_delay = address_delay
        self._ids = itertools.count(1)
        self._group_ids = itertools.count(1)
        self._machines: dict[str, _Machine] = {}
        self._groups: dict[str, _Group] = {}

    # =========================================================================
    # Instances
    # =========================================================================

    def run_instances(self, spec: RunSpec) -> list[Instance]:
        with self._lock:
            self._record("run_instances", spec.image_id)
            for g in spec.groups:
                if g.name not in self._groups:
                    raise BackendError(ErrorCode.GROUP_NOT_FOUND, f"group {g.name!r} not found")
            started: list[Instance] = []
            for _ in range(spec.count):
                n = next(self._ids)
                inst = Instance(id=f"i-{n}", state=InstanceState.PENDING)
                self._machines[inst.id] = _Machine(
                    instance=inst,
                    groups=tuple(g.name for g in spec.groups),
                    user_data=spec.user_data,
                    listings_until_address=self.address_delay,
                )
                if not self.address_delay:
                    self._assign_address(self._machines[inst.id])
                started.append(self._machines[inst.id].instance)
            return started

    def terminate_instances(self, ids: Sequence[str]) -> None:
        with self._lock:
            self._record("terminate_instances", ",".join(ids))
            for id in ids:
                m = self._machines.get(id)
                if m is None:
                    raise BackendError(ErrorCode.INSTANCE_NOT_FOUND, f"instance {id!r} not found")
                m.instance = replace(m.instance, state=InstanceState.TERMINATED)

    def instances(
        self,
        *,
        ids: Sequence[str] | None = None,
        group: str | None = None,
        states: Sequence[str] | None = None,
    ) -> list[Instance]:
        with self._lock:
            self._record("instances", group or "")
            found: list[Instance] = []
            for m in self._machines.values():
                if ids is not None and m.instance.id not in ids:
                    continue
                if group is not None and group not in m.groups:
                    continue
                if states is not None and m.instance.state not in states:
                    continue
                self._tick(m)
                found.append(m.instance)
            return found

    def user_data(self, instance_id: str) -> bytes:
        with self._lock:
            return self._machines[instance_id].user_data

    def _tick(self, m: _Machine) -> None:
        if m.instance.dns_name or m.instance.state == InstanceState.TERMINATED:
            return
        m.listings_until_address -= 1
        if m.listings_until_address <= 0:
            self._assign_address(m)

    @staticmethod
    def _assign_address(m: _Machine) -> None:
        n = int(m.instance.id.removeprefix("i-"))
        m.instance = replace(m.instance, dns_name=f"10.0.0.{n + 4}", state=InstanceState.RUNNING)

    # =========================================================================
    # Security Groups
    # =========================================================================

    def security_groups(self, names: Sequence[str] | None = None) -> list[SecurityGroup]:
        with self._lock:
            self._record("security_groups", ",".join(names or ()))
            return [
                SecurityGroup(g.name, g.id)
                for g in self._groups.values()
                if names is None or g.name in names
            ]

    def create_security_group(self, name: str, description: str) -> SecurityGroup:
        with self._lock:
            self._record("create_security_group", name)
            if name in self._groups:
                raise BackendError(ErrorCode.GROUP_DUPLICATE, f"group {name!r} already exists")
            g = _Group(name=name, id=f"sg-{next(self._group_ids)}", description=description)
            self._groups[name] = g
            return SecurityGroup(g.name, g.id)

    def delete_security_group(self, group: SecurityGroup) -> None:
        with self._lock:
            self._record("delete_security_group", group.name)
            g = self._groups.get(group.name)
            if g is None or (group.id and g.id != group.id):
                raise BackendError(ErrorCode.GROUP_NOT_FOUND, f"group {group.name!r} not found")
            for m in self._machines.values():
                if group.name in m.groups and m.instance.state != InstanceState.TERMINATED:
                    raise BackendError(
                        ErrorCode.GROUP_IN_USE, f"group {group.name!r} is used by {m.instance.id}"
                    )
            del self._groups[group.name]

    def authorize_ingress(self, group: SecurityGroup, perms: Sequence[IPPermission]) -> None:
        with self._lock:
            self._record("authorize_ingress", group.name)
            g = self._groups.get(group.name)
            if g is None:
                raise BackendError(ErrorCode.GROUP_NOT_FOUND, f"group {group.name!r} not found")
            g.perms.extend(perms)

    def permissions(self, name: str) -> list[IPPermission]:
        with self._lock:
            return list(self._groups[name].perms)


class DummyStorage(_Recorder):
    """Object storage kept in a dict."""

    def __init__(self, conditional: bool = False) -> None:
        super().__init__()
        self.supports_conditional_put = conditional
        self.container_created = False
        self._objects: dict[str, bytes] = {}

    def ensure_container(self) -> None:
        with self._lock:
            self._record("ensure_container")
            self.container_created = True

    def get(self, key: str) -> bytes:
        with self._lock:
            self._record("get", key)
            try:
                return self._objects[key]
            except KeyError:
                raise NotFoundError(key) from None

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._record("put", key)
            self._objects[key] = bytes(data)

    def put_if_absent(self, key: str, data: bytes) -> bool:
        with self._lock:
            self._record("put_if_absent", key)
            if key in self._objects:
                return False
            self._objects[key] = bytes(data)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._record("delete", key)
            self._objects.pop(key, None)


def resolve_image(constraint: ImageConstraint) -> ImageSpec:
    return ImageSpec(
        image_id=f"dummy-{constraint.series}-{constraint.arch}",
        series=constraint.series,
        arch=constraint.arch,
    )
