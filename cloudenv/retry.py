"""Retry primitive for eventually-consistent cloud APIs.

A resource that was just created may not yet be visible to the next call,
and a group that was just detached from a terminating instance may still
report itself as in use. ``attempt`` retries an operation only while it
fails with one specific backend error code and surfaces everything else
immediately.

Example:
    from cloudenv.retry import RetryPolicy, attempt

    attempt(
        "InvalidGroup.InUse",
        lambda: compute.delete_security_group(group),
        policy=RetryPolicy(max_attempts=10, delay=2.0),
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from cloudenv.constants import RETRY_DELAY, RETRY_MAX_ATTEMPTS
from cloudenv.exceptions import BackendError

log = logger.bind(component="retry")

type RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget for ``attempt`` and the bootstrap address poll.

    Attributes:
        max_attempts: Total number of invocations, including the first one.
        delay: Fixed delay in seconds between invocations.
        jitter: Upper bound of a random extra delay added to ``delay``.
        sleep: Sleep function, injectable so tests never block.
    """

    max_attempts: int = RETRY_MAX_ATTEMPTS
    delay: float = RETRY_DELAY
    jitter: float = 0.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0 or self.jitter < 0:
            raise ValueError("delay and jitter must be non-negative")

    @classmethod
    def immediate(cls, max_attempts: int = RETRY_MAX_ATTEMPTS) -> RetryPolicy:
        """Policy that never sleeps between attempts."""
        return cls(max_attempts=max_attempts, delay=0.0, sleep=lambda _: None)


DEFAULT_POLICY = RetryPolicy()


def is_error_code(*codes: str) -> RetryPredicate:
    """Predicate matching BackendErrors carrying one of ``codes``."""

    def predicate(e: BaseException) -> bool:
        return isinstance(e, BackendError) and e.code in codes

    return predicate


def _before_sleep(code: str) -> Callable[[RetryCallState], None]:
    def hook(state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action else 0.0
        log.warning(
            "Attempt {n} failed with {code}, retrying in {delay:.1f}s",
            n=state.attempt_number,
            code=code,
            delay=delay,
        )

    return hook


def attempt[T](
    code: str,
    fn: Callable[[], T],
    *,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> T:
    """Call ``fn`` until it stops failing with backend error ``code``.

    ``fn`` runs exactly once per iteration and its single outcome is both
    returned and classified.

    Args:
        code: Backend error code considered transient.
        fn: Zero-argument operation.
        policy: Attempt budget and delay.

    Returns:
        Whatever ``fn`` returned on its first successful call.

    Raises:
        BackendError: The last transient error once the budget is spent.
        Exception: Any non-matching error, on its first occurrence.
    """
    counter = 0

    def logged() -> T:
        nonlocal counter
        counter += 1
        log.debug("Attempt {n}/{max}", n=counter, max=policy.max_attempts)
        try:
            result = fn()
        except Exception as e:
            log.debug("Attempt {n} error: {err}", n=counter, err=e)
            raise
        log.debug("Attempt {n} succeeded", n=counter)
        return result

    wait = wait_fixed(policy.delay)
    if policy.jitter:
        wait = wait + wait_random(0, policy.jitter)

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception(is_error_code(code)),
        before_sleep=_before_sleep(code),
        sleep=policy.sleep,
        reraise=True,
    )

    try:
        return retrying(logged)
    except BackendError as e:
        if e.code == code:
            log.warning("Number of attempts exceeded ({n}): {err}", n=counter, err=e)
        raise
