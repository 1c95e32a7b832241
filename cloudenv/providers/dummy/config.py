"""Dummy provider configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DummyConfig:
    """Configuration of an in-memory environment.

    Args:
        control_bucket: Name of the in-memory "cloud" this environment
            lives in. Environments opened with the same bucket through the
            same provider share instances, groups and storage.
        conditional_writes: Whether storage supports put-if-absent, which
            closes the concurrent double-bootstrap race.
        address_delay: Number of listings a new instance stays without
            an address, simulating slow address assignment.
    """

    control_bucket: str = "dummy"
    region: str = "dummy"
    instance_type: str = "small"
    default_series: str = "jammy"
    authorized_keys: str | None = None
    authorized_keys_path: str | None = None
    conditional_writes: bool = False
    address_delay: int = 0

    @property
    def endpoint(self) -> str:
        return f"dummy://{self.region}"
