"""cloudenv - Provision and tear down cloud environments.

Example:

    from cloudenv import default_registry

    registry = default_registry()
    env = registry.open("ec2", "staging", {"control-bucket": "juju-staging-state"})

    info = env.bootstrap()
    worker = env.start_instance(1, info)
    ...
    env.destroy()
"""

# Environment façade and provider registry
from cloudenv.environ import Environ
from cloudenv.registry import EnvironProvider, ProviderRegistry, default_registry

# Primitives
from cloudenv.conc import Parallel
from cloudenv.retry import RetryPolicy, attempt

# Value types
from cloudenv.types import BootstrapState, Instance, SecurityGroup, StateInfo

# Configuration
from cloudenv.config import load_config, resolve_environment
from cloudenv.logging import LogConfig, setup_logging, teardown_logging

# Exceptions
from cloudenv.exceptions import (
    AddressTimeoutError,
    AlreadyBootstrappedError,
    BackendError,
    CloudEnvError,
    ConfigurationError,
    DestroyError,
    InstanceNotFoundError,
    NotFoundError,
    ParallelError,
    ProvisioningError,
    UnknownProviderError,
)

__all__ = [
    "AddressTimeoutError",
    "AlreadyBootstrappedError",
    "BackendError",
    "BootstrapState",
    "CloudEnvError",
    "ConfigurationError",
    "DestroyError",
    "Environ",
    "EnvironProvider",
    "Instance",
    "InstanceNotFoundError",
    "LogConfig",
    "NotFoundError",
    "Parallel",
    "ParallelError",
    "ProviderRegistry",
    "ProvisioningError",
    "RetryPolicy",
    "SecurityGroup",
    "StateInfo",
    "UnknownProviderError",
    "attempt",
    "default_registry",
    "load_config",
    "resolve_environment",
    "setup_logging",
    "teardown_logging",
]
