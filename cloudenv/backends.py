"""Capability interfaces every cloud backend implements.

A provider supplies one ComputeBackend and one StorageBackend; the engine
never talks to a cloud SDK directly. Failures surface as BackendError
(compute) or NotFoundError (storage, missing key).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

from cloudenv.types import ImageConstraint, ImageSpec, Instance, IPPermission, RunSpec, SecurityGroup

type ImageResolver = Callable[[ImageConstraint], ImageSpec]


@runtime_checkable
class ComputeBackend(Protocol):
    """Instance and security-group operations of a cloud."""

    def run_instances(self, spec: RunSpec) -> list[Instance]:
        """Launch ``spec.count`` instances with ``spec.groups`` attached."""
        ...

    def terminate_instances(self, ids: Sequence[str]) -> None:
        """Terminate every instance in ``ids`` with a single request."""
        ...

    def instances(
        self,
        *,
        ids: Sequence[str] | None = None,
        group: str | None = None,
        states: Sequence[str] | None = None,
    ) -> list[Instance]:
        """List instances, optionally filtered by id, group name and state."""
        ...

    def security_groups(self, names: Sequence[str] | None = None) -> list[SecurityGroup]:
        """List groups, all of them when ``names`` is None."""
        ...

    def create_security_group(self, name: str, description: str) -> SecurityGroup: ...

    def delete_security_group(self, group: SecurityGroup) -> None: ...

    def authorize_ingress(self, group: SecurityGroup, perms: Sequence[IPPermission]) -> None: ...


@runtime_checkable
class StorageBackend(Protocol):
    """Key/value object storage holding the bootstrap state."""

    supports_conditional_put: bool

    def ensure_container(self) -> None:
        """Create the bucket/directory backing this storage if missing."""
        ...

    def get(self, key: str) -> bytes:
        """Return the object's bytes; raises NotFoundError when absent."""
        ...

    def put(self, key: str, data: bytes) -> None: ...

    def put_if_absent(self, key: str, data: bytes) -> bool:
        """Write only when ``key`` does not exist; False if it already did.

        Backends with ``supports_conditional_put`` false may raise
        BackendError with code ``Unsupported``; callers check the flag first.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove ``key``; removing a missing key is not an error."""
        ...
