"""Centralized constants and enums for cloudenv.

Port numbers, group naming, storage keys and backend error codes live
here so every provider agrees on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Network
# =============================================================================

STATE_PORT: Final = 2181
SSH_PORT: Final = 22
ANYWHERE: Final = "0.0.0.0/0"


# =============================================================================
# Naming
# =============================================================================

GROUP_PREFIX: Final = "juju-"
STATE_FILE: Final = "provider-state"


# =============================================================================
# Instance States
# =============================================================================


class InstanceState(StrEnum):
    """Provider-neutral instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


LIVE_STATES: Final = (InstanceState.PENDING.value, InstanceState.RUNNING.value)


# =============================================================================
# Transient Backend Error Codes
# =============================================================================


class ErrorCode(StrEnum):
    """Machine-readable backend error codes the engine reacts to."""

    GROUP_NOT_FOUND = "InvalidGroup.NotFound"
    GROUP_IN_USE = "InvalidGroup.InUse"
    GROUP_DUPLICATE = "InvalidGroup.Duplicate"
    INSTANCE_NOT_FOUND = "InvalidInstanceID.NotFound"
    UNSUPPORTED = "Unsupported"


# =============================================================================
# Retry / Polling Defaults
# =============================================================================

RETRY_MAX_ATTEMPTS: Final = 20
RETRY_DELAY: Final = 5.0

ADDRESS_POLL_ATTEMPTS: Final = 20
ADDRESS_POLL_DELAY: Final = 5.0

GROUP_DELETE_CONCURRENCY: Final = 20
