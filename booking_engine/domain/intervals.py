"""Half-open interval arithmetic.

Every function here is pure. Bounds only need a total order, so the same
helpers work on datetimes, ``datetime.time`` wall-clock values and
seconds-since-midnight integers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Sequence, TypeVar

from booking_engine.domain.models import Interval


T = TypeVar("T")


def overlaps(start_a: T, end_a: T, start_b: T, end_b: T) -> bool:
    """True when ``[start_a, end_a)`` and ``[start_b, end_b)`` share any instant."""
    return start_a < end_b and start_b < end_a


def contains(outer_start: T, outer_end: T, inner_start: T, inner_end: T) -> bool:
    return outer_start <= inner_start and inner_end <= outer_end


def intersect_windows(
    first: Sequence[tuple[T, T]],
    second: Sequence[tuple[T, T]],
) -> list[tuple[T, T]]:
    """Pairwise clamp of two window lists, keeping every non-empty overlap."""
    common: list[tuple[T, T]] = []
    for start_a, end_a in first:
        for start_b, end_b in second:
            start = start_a if start_a > start_b else start_b
            end = end_a if end_a < end_b else end_b
            if start < end:
                common.append((start, end))
    return common


def intersect_all(window_sets: Iterable[Sequence[tuple[T, T]]]) -> list[tuple[T, T]]:
    """Fold :func:`intersect_windows` across parties; empty input gives no windows."""
    iterator = iter(window_sets)
    try:
        common = list(next(iterator))
    except StopIteration:
        return []
    for windows in iterator:
        common = intersect_windows(common, windows)
        if not common:
            break
    return sorted(common)


def expand(interval: Interval, before_minutes: int = 0, after_minutes: int = 0) -> Interval:
    return Interval(
        start=interval.start - timedelta(minutes=before_minutes),
        end=interval.end + timedelta(minutes=after_minutes),
    )


def interval_overlaps(first: Interval, second: Interval) -> bool:
    return overlaps(first.start, first.end, second.start, second.end)


def any_overlap(window: Interval, others: Iterable[tuple[datetime, datetime]]) -> bool:
    return any(overlaps(window.start, window.end, start, end) for start, end in others)
