"""TOML-based environment configuration.

Loads ~/.cloudenv/environments.toml (global) and cloudenv.toml (project),
merges them, and resolves named environments into open Environs:

    default = "staging"

    [environments.staging]
    type = "ec2"
    region = "us-west-2"
    control-bucket = "juju-staging-state"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cloudenv.exceptions import ConfigurationError

if TYPE_CHECKING:
    from cloudenv.environ import Environ
    from cloudenv.registry import ProviderRegistry

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".cloudenv" / "environments.toml"
PROJECT_CONFIG_NAME = "cloudenv.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"cannot parse {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("environments", {})
    return merged


def environment_config(config: RawConfig, name: str | None = None) -> tuple[str, RawConfig]:
    """Pick the named (or default) environment out of a loaded config.

    Returns:
        (environment name, its raw settings including ``type``).
    """
    envs = config.get("environments", {})
    if name is None:
        name = config.get("default")
        if name is None:
            if len(envs) != 1:
                raise ConfigurationError(
                    "no default environment; set 'default' or name one "
                    f"(available: {', '.join(envs) or 'none'})"
                )
            name = next(iter(envs))

    if name not in envs:
        raise ConfigurationError(
            f"environment {name!r} not found. Available: {', '.join(envs) or 'none'}"
        )
    raw = dict(envs[name])
    if "type" not in raw:
        raise ConfigurationError(f"environment {name!r} missing 'type' field")
    return name, raw


def resolve_environment(
    name: str | None = None,
    *,
    registry: ProviderRegistry | None = None,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Environ:
    """Open the named environment through ``registry``."""
    from cloudenv.registry import default_registry

    registry = registry or default_registry()
    config = load_config(project_dir=project_dir, global_path=global_path)
    env_name, raw = environment_config(config, name)
    provider_type = raw.pop("type")
    return registry.open(provider_type, env_name, raw)
