from __future__ import annotations

import threading
import time

import pytest

from cloudenv.conc import Parallel, for_each_async, map_async
from cloudenv.exceptions import ParallelError

pytestmark = [pytest.mark.xdist_group("unit"), pytest.mark.timeout(30)]


class _Gauge:
    """Tracks how many operations run at the same time."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0
        self.done = 0

    def op(self, fail: bool = False):
        def run() -> None:
            with self.lock:
                self.running += 1
                self.peak = max(self.peak, self.running)
            try:
                time.sleep(0.01)
                if fail:
                    raise RuntimeError("boom")
            finally:
                with self.lock:
                    self.running -= 1
                    self.done += 1

        return run


class TestParallel:
    def test_never_exceeds_cap(self) -> None:
        gauge = _Gauge()
        p = Parallel(20)
        for _ in range(50):
            p.do(gauge.op())
        p.wait()

        assert gauge.peak <= 20
        assert gauge.done == 50

    def test_wait_returns_none_when_all_succeed(self) -> None:
        p = Parallel(4)
        for _ in range(10):
            p.do(lambda: None)
        assert p.wait() is None

    def test_wait_raises_when_any_fails(self) -> None:
        gauge = _Gauge()
        p = Parallel(20)
        for n in range(50):
            p.do(gauge.op(fail=n in (7, 31)))

        with pytest.raises(ParallelError) as exc:
            p.wait()

        assert gauge.done == 50
        assert len(exc.value.errors) == 2
        assert exc.value.__cause__ is exc.value.errors[0]
        assert "and 1 more" in str(exc.value)

    def test_each_call_runs_exactly_once(self) -> None:
        seen: list[int] = []
        lock = threading.Lock()

        def record(n: int) -> None:
            with lock:
                seen.append(n)

        p = Parallel(3)
        for n in range(25):
            p.do(lambda n=n: record(n))
        p.wait()

        assert sorted(seen) == list(range(25))

    def test_do_blocks_while_cap_is_reached(self) -> None:
        release = threading.Event()
        p = Parallel(1)
        p.do(release.wait)

        scheduled = threading.Event()

        def second() -> None:
            p.do(lambda: None)
            scheduled.set()

        t = threading.Thread(target=second)
        t.start()
        assert not scheduled.wait(0.1)

        release.set()
        assert scheduled.wait(5)
        t.join()
        p.wait()

    def test_do_after_wait_is_an_error(self) -> None:
        p = Parallel(2)
        p.wait()
        with pytest.raises(RuntimeError):
            p.do(lambda: None)

    def test_rejects_non_positive_cap(self) -> None:
        with pytest.raises(ValueError):
            Parallel(0)

    def test_context_manager_waits(self) -> None:
        gauge = _Gauge()
        with Parallel(5) as p:
            for _ in range(10):
                p.do(gauge.op())
        assert gauge.done == 10


class TestMapAsync:
    def test_preserves_order(self) -> None:
        assert list(map_async(lambda x: x * 2, [3, 1, 2], concurrency=2)) == [6, 2, 4]

    def test_empty_input(self) -> None:
        assert list(map_async(lambda x: x, [])) == []

    def test_for_each_raises_first_error(self) -> None:
        def check(x: int) -> None:
            if x == 2:
                raise ValueError(x)

        with pytest.raises(ValueError):
            for_each_async(check, [1, 2, 3])
