from __future__ import annotations

import pytest

from cloudenv.exceptions import BackendError
from cloudenv.retry import RetryPolicy, attempt, is_error_code

pytestmark = [pytest.mark.xdist_group("unit")]

IN_USE = "InvalidGroup.InUse"


class _Op:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors: Exception, result: object = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self) -> object:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestAttempt:
    def test_success_on_first_call(self) -> None:
        op = _Op(result=42)
        assert attempt(IN_USE, op, policy=RetryPolicy.immediate(5)) == 42
        assert op.calls == 1

    def test_retries_matching_code_until_success(self) -> None:
        op = _Op(BackendError(IN_USE, "busy"), BackendError(IN_USE, "busy"))
        assert attempt(IN_USE, op, policy=RetryPolicy.immediate(5)) == "ok"
        assert op.calls == 3

    def test_stops_after_budget_and_raises_last_error(self) -> None:
        errors = [BackendError(IN_USE, f"busy {n}") for n in range(10)]
        op = _Op(*errors)

        with pytest.raises(BackendError) as exc:
            attempt(IN_USE, op, policy=RetryPolicy.immediate(4))

        assert op.calls == 4
        assert exc.value is errors[3]

    def test_other_code_returns_on_first_call(self) -> None:
        op = _Op(BackendError("AuthFailure", "denied"))
        with pytest.raises(BackendError, match="denied"):
            attempt(IN_USE, op, policy=RetryPolicy.immediate(5))
        assert op.calls == 1

    def test_non_backend_errors_propagate(self) -> None:
        op = _Op(ValueError("bad"))
        with pytest.raises(ValueError):
            attempt(IN_USE, op, policy=RetryPolicy.immediate(5))
        assert op.calls == 1

    def test_sleeps_fixed_delay_between_attempts(self) -> None:
        sleeps: list[float] = []
        policy = RetryPolicy(max_attempts=3, delay=2.0, sleep=sleeps.append)
        op = _Op(BackendError(IN_USE, "busy"), BackendError(IN_USE, "busy"))

        attempt(IN_USE, op, policy=policy)

        assert sleeps == [2.0, 2.0]

    def test_no_sleep_after_success(self) -> None:
        sleeps: list[float] = []
        attempt(IN_USE, _Op(), policy=RetryPolicy(max_attempts=3, delay=1.0, sleep=sleeps.append))
        assert sleeps == []


class TestRetryPolicy:
    def test_rejects_empty_budget(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(delay=-1.0)

    def test_immediate_never_delays(self) -> None:
        policy = RetryPolicy.immediate(3)
        assert policy.max_attempts == 3
        assert policy.delay == 0.0


class TestIsErrorCode:
    def test_matches_backend_error_codes(self) -> None:
        pred = is_error_code("A", "B")
        assert pred(BackendError("A", "x"))
        assert pred(BackendError("B", "x"))
        assert not pred(BackendError("C", "x"))
        assert not pred(RuntimeError("A"))
