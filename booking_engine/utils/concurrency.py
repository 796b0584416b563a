"""Thread fan-out for independent storage reads."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar


T = TypeVar("T")
R = TypeVar("R")


def fan_out(function: Callable[[T], R], items: Sequence[T], max_workers: int) -> list[R]:
    """Apply ``function`` to every item concurrently, preserving input order.

    The first exception raised by any call propagates to the caller once all
    submitted work has been joined.
    """
    if len(items) <= 1:
        return [function(item) for item in items]
    workers = max(1, min(max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="engine-read") as executor:
        return list(executor.map(function, items))


def run_parallel(calls: Sequence[Callable[[], R]], max_workers: int) -> list[R]:
    """Run zero-argument callables concurrently and return their results in order."""
    return fan_out(lambda call: call(), calls, max_workers)
