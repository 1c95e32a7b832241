"""Value types shared by the engine and its backends."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from cloudenv.constants import STATE_PORT
from cloudenv.exceptions import CloudEnvError


@dataclass(frozen=True, slots=True)
class Instance:
    """A compute instance as last reported by its backend.

    Instances are snapshots: re-listing yields new values rather than
    mutating existing ones. ``raw`` keeps the provider-native record.
    """

    id: str
    dns_name: str = ""
    state: str = ""
    raw: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )

    def __str__(self) -> str:
        return self.id

    @property
    def addressable(self) -> bool:
        return bool(self.dns_name)


@dataclass(frozen=True, slots=True)
class SecurityGroup:
    """A named firewall-rule container; ``id`` is empty until created."""

    name: str
    id: str = ""

    @property
    def exists(self) -> bool:
        return bool(self.id)


@dataclass(frozen=True, slots=True)
class IPPermission:
    """An ingress rule: protocol and port range from a set of CIDRs."""

    protocol: str
    from_port: int
    to_port: int
    source_ips: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ImageSpec:
    """A resolved machine image."""

    image_id: str
    series: str = ""
    arch: str = ""


@dataclass(frozen=True, slots=True)
class ImageConstraint:
    series: str = "jammy"
    arch: str = "amd64"


DEFAULT_IMAGE_CONSTRAINT = ImageConstraint()


@dataclass(frozen=True, slots=True)
class RunSpec:
    """Parameters of a single RunInstances request."""

    image_id: str
    instance_type: str
    user_data: bytes
    groups: tuple[SecurityGroup, ...]
    count: int = 1


@dataclass(frozen=True, slots=True)
class StateInfo:
    """Where the control plane can be reached: ``host:port`` addresses."""

    addrs: tuple[str, ...]

    @classmethod
    def from_instances(cls, instances: Sequence[Instance]) -> StateInfo:
        return cls(tuple(state_addr(inst) for inst in instances))


def state_addr(inst: Instance) -> str:
    return f"{inst.dns_name}:{STATE_PORT}"


@dataclass(frozen=True, slots=True)
class BootstrapState:
    """Durable record of which instances run the state server."""

    state_instances: tuple[str, ...]

    def to_bytes(self) -> bytes:
        return json.dumps({"state-instances": list(self.state_instances)}).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> BootstrapState:
        try:
            raw = json.loads(data or b"{}")
            ids = raw.get("state-instances", [])
        except (ValueError, AttributeError) as e:
            raise CloudEnvError(f"cannot parse bootstrap state: {e}") from e
        if not isinstance(ids, list):
            raise CloudEnvError(
                f"cannot parse bootstrap state: state-instances is {type(ids).__name__}"
            )
        return cls(state_instances=tuple(str(i) for i in ids))
