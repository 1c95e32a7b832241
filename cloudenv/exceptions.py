"""Custom exception hierarchy for cloudenv.

All cloudenv-specific exceptions inherit from CloudEnvError, enabling
callers to catch every engine failure with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence


class CloudEnvError(Exception):
    """Base exception for all cloudenv errors."""


class BackendError(CloudEnvError):
    """Raised by backend adapters when a cloud API call fails.

    ``code`` is the provider's machine-readable error code; the retry
    primitive classifies transient failures by it.
    """

    def __init__(self, code: str, message: str, operation: str = "") -> None:
        self.code = code
        self.message = message
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}{message} ({code})")


class NotFoundError(CloudEnvError):
    """Raised by storage backends when a key does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"file {key!r} not found")


class ConfigurationError(CloudEnvError):
    """Raised for invalid configuration or missing required settings."""


class UnknownProviderError(ConfigurationError):
    """Raised when no provider is registered under the requested name."""

    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        self.name = name
        known = ", ".join(available) if available else "none"
        super().__init__(f"no registered provider for {name!r} (available: {known})")


class ProvisioningError(CloudEnvError):
    """Raised when creating or configuring cloud resources fails."""


class AlreadyBootstrappedError(ProvisioningError):
    """Raised when bootstrap finds an existing bootstrap state."""

    def __init__(self) -> None:
        super().__init__("environment is already bootstrapped")


class InstanceNotFoundError(ProvisioningError):
    """Raised when a just-started instance vanishes from the listing."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"cannot find just-started bootstrap instance {instance_id!r}")


class AddressTimeoutError(CloudEnvError):
    """Raised when an instance never reports a network address."""

    def __init__(self, instance_id: str, attempts: int) -> None:
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(
            f"timed out trying to get bootstrap instance {instance_id!r} "
            f"DNS address after {attempts} attempts"
        )


class ParallelError(CloudEnvError):
    """Raised by Parallel.wait() when one or more scheduled calls failed."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        first = self.errors[0] if self.errors else None
        more = f" (and {len(self.errors) - 1} more)" if len(self.errors) > 1 else ""
        super().__init__(f"{first}{more}")


class DestroyError(CloudEnvError):
    """Raised when one or more teardown stages failed."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(str(self.errors[0]) if self.errors else "destroy failed")
