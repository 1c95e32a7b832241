"""Shared plumbing for provider implementations."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any, ClassVar

from cloudenv.bootstrap import ADDRESS_POLICY
from cloudenv.environ import Environ
from cloudenv.exceptions import ConfigurationError
from cloudenv.retry import DEFAULT_POLICY, RetryPolicy

type RawConfig = Mapping[str, Any]


def config_fields(raw: RawConfig) -> dict[str, Any]:
    """TOML-style keys (``control-bucket``) to field names (``control_bucket``)."""
    return {k.replace("-", "_"): v for k, v in raw.items() if k != "type"}


class ProviderBase[C]:
    """Config validation and ``open`` shared by every provider.

    Subclasses set ``name``, ``instance_id_accessor`` and ``config_class``
    and implement ``connect``; ``check`` adds backend-specific validation.
    """

    name: ClassVar[str]
    instance_id_accessor: ClassVar[str]
    config_class: ClassVar[type[Any]]
    immutable_fields: ClassVar[tuple[str, ...]] = ("control_bucket",)
    environ_class: ClassVar[type[Environ]] = Environ

    def __init__(
        self,
        *,
        retry: RetryPolicy = DEFAULT_POLICY,
        poll: RetryPolicy = ADDRESS_POLICY,
    ) -> None:
        self.retry = retry
        self.poll = poll

    def validate(self, config: C | RawConfig, old: C | None = None) -> C:
        if isinstance(config, self.config_class):
            cfg: C = config
        else:
            cfg = self._build(config)  # type: ignore[arg-type]
        self._check_immutable(cfg, old)
        self.check(cfg)
        return cfg

    def _build(self, raw: RawConfig) -> C:
        fields = config_fields(raw)
        known = {f.name for f in dataclasses.fields(self.config_class)}
        unknown = sorted(set(fields) - known)
        if unknown:
            raise ConfigurationError(
                f"unknown {self.name} config keys: {', '.join(unknown)}"
            )
        try:
            return self.config_class(**fields)
        except TypeError as e:
            raise ConfigurationError(f"invalid {self.name} config: {e}") from e

    def _check_immutable(self, cfg: C, old: C | None) -> None:
        if old is None:
            return
        for field in self.immutable_fields:
            before, after = getattr(old, field), getattr(cfg, field)
            if before != after:
                raise ConfigurationError(f"cannot change {field} from {before!r} to {after!r}")

    def check(self, cfg: C) -> None:
        """Backend-specific validation; raise ConfigurationError."""

    def open(self, env_name: str, config: C | RawConfig) -> Environ:
        return self.environ_class(
            env_name,
            self.validate(config),  # type: ignore[arg-type]
            self,  # type: ignore[arg-type]
            retry=self.retry,
            poll=self.poll,
        )
