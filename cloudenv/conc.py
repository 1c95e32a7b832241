"""Concurrent utilities - bounded fan-out/fan-in for blocking backend calls."""

from __future__ import annotations

import contextvars
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from types import TracebackType
from typing import Self

from cloudenv.exceptions import ParallelError


class Parallel:
    """Run independent fallible calls concurrently, at most N in flight.

    ``do`` returns as soon as the call is scheduled, blocking only while
    ``max_workers`` calls are already running. ``wait`` blocks until every
    scheduled call finished and raises ParallelError if any of them failed.

    Example:
        >>> p = Parallel(20)
        >>> for group in groups:
        ...     p.do(lambda g=group: delete(g))
        >>> p.wait()
    """

    def __init__(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cloudenv-parallel",
        )
        self._futures: list[Future[None]] = []
        self._lock = threading.Lock()
        self._closed = False

    def do(self, fn: Callable[[], object]) -> None:
        """Schedule ``fn`` for background execution."""
        self._ensure_open()
        self._slots.acquire()

        # Fresh context copy per call (ctx.run cannot be concurrent on same object)
        ctx = contextvars.copy_context()

        def run() -> None:
            try:
                ctx.run(fn)
            finally:
                self._slots.release()

        with self._lock:
            if self._closed:
                self._slots.release()
                raise RuntimeError("Parallel.do() called after wait()")
            self._futures.append(self._executor.submit(run))

    def wait(self) -> None:
        """Block until all scheduled calls completed.

        Raises:
            ParallelError: Carrying every error raised by a scheduled call.
        """
        with self._lock:
            self._closed = True
            futures = list(self._futures)

        errors = [e for f in futures if (e := f.exception()) is not None]
        self._executor.shutdown(wait=True)
        if errors:
            raise ParallelError(errors) from errors[0]

    def _ensure_open(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Parallel.do() called after wait()")

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.wait()
        else:
            self._executor.shutdown(wait=True, cancel_futures=True)


def map_async[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> Iterator[O]:
    """Apply function to items concurrently, preserving order.

    Automatically propagates contextvars to worker threads.

    Args:
        fn: Function to apply to each item.
        items: Items to process.
        concurrency: Max concurrent workers. None = len(items).

    Yields:
        Results in same order as input items.
    """
    items_list = list(items)
    if not items_list:
        return

    workers = concurrency if concurrency is not None else len(items_list)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]
        for future in futures:
            yield future.result()


def for_each_async[I](
    fn: Callable[[I], object],
    items: Iterable[I],
    concurrency: int | None = None,
) -> None:
    """Apply function to items concurrently, discarding results.

    Raises:
        Exception: First exception encountered (fails fast).
    """
    for _ in map_async(fn, items, concurrency):
        pass
