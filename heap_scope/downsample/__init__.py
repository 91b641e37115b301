"""Point reduction for heap timelines.

Both algorithms take parallel ``x``/``y`` sequences, a target point count and a
set of 0-based indices that must survive the reduction (GC event samples).
"""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

MIN_TARGET = 100
DEFAULT_TARGET = 3000


class Algorithm(Enum):
    BUCKET = "bucket"
    LTTB = "lttb"


@dataclass
class Series:
    x: list[float] = field(default_factory=list)
    y: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.x)


DownsampleResult = Series


@dataclass
class DownsampleConfig:
    algo: Algorithm = Algorithm.BUCKET
    target: int = DEFAULT_TARGET
    active: bool = True


def _valid_forced(forced_indices: Iterable[int], n: int) -> set[int]:
    return {i for i in forced_indices if 0 <= i < n}


def _gather(x: Sequence[float], y: Sequence[float], indices: Iterable[int]) -> Series:
    ordered = sorted(indices)
    return Series([x[i] for i in ordered], [y[i] for i in ordered])


def downsample_bucket(
    x: Sequence[float], y: Sequence[float], target: int, forced_indices: Iterable[int] = ()
) -> Series:
    """Keep the minimum and maximum of every bucket plus endpoints and forced points.

    Spikes and drops are never smoothed away: the global extrema are always some
    bucket's extrema. Two points per bucket plus the endpoints and forced points
    must fit in ``target``; when the forced points leave no room for a bucket only
    they and the endpoints are returned.
    """
    n = len(x)
    if n <= target:
        return Series(list(x), list(y))

    chosen = {0, n - 1} | _valid_forced(forced_indices, n)
    budget = target - len(chosen)
    if budget < 2:
        return _gather(x, y, chosen)
    bucket_count = min(n, budget // 2)
    bucket_size = n / bucket_count

    for b in range(bucket_count):
        start = math.floor(b * bucket_size)
        end = min(n - 1, math.floor((b + 1) * bucket_size))
        if end <= start:
            continue
        min_idx = max_idx = start
        for i in range(start + 1, end + 1):
            if y[i] < y[min_idx]:
                min_idx = i
            if y[i] > y[max_idx]:
                max_idx = i
        chosen.add(min_idx)
        chosen.add(max_idx)

    return _gather(x, y, chosen)


def downsample_lttb(
    x: Sequence[float], y: Sequence[float], target: int, forced_indices: Iterable[int] = ()
) -> Series:
    """Largest-Triangle-Three-Buckets with forced points seeded into the keep set."""
    n = len(x)
    if n <= target:
        return Series(list(x), list(y))

    keep = {0, n - 1} | _valid_forced(forced_indices, n)
    remaining = target - len(keep)
    if remaining <= 0:
        return _gather(x, y, keep)

    bucket_size = (n - 2) / remaining
    a = 0
    for i in range(remaining):
        range_start = math.floor(i * bucket_size) + 1
        range_end = min(n - 1, math.floor((i + 1) * bucket_size) + 1)
        if range_start >= range_end:
            continue

        # Mean of the next bucket is the third vertex.
        avg_start = min(n - 1, range_end)
        avg_end = min(n - 1, math.floor((i + 2) * bucket_size) + 1)
        count = avg_end - avg_start
        if count > 0:
            avg_x = sum(x[avg_start:avg_end]) / count
            avg_y = sum(y[avg_start:avg_end]) / count
        else:
            avg_x, avg_y = x[range_end], y[range_end]

        max_area = -1.0
        chosen = range_start
        for j in range(range_start, range_end):
            area = abs((x[a] - avg_x) * (y[j] - y[a]) - (x[a] - x[j]) * (avg_y - y[a]))
            if area > max_area:
                max_area = area
                chosen = j
        keep.add(chosen)
        a = chosen

    return _gather(x, y, keep)


_ALGORITHMS = {
    Algorithm.BUCKET: downsample_bucket,
    Algorithm.LTTB: downsample_lttb,
}


def downsample(
    x: Sequence[float],
    y: Sequence[float],
    target: int,
    forced_indices: Iterable[int] = (),
    algo: Algorithm | str = Algorithm.BUCKET,
) -> Series:
    try:
        algo = Algorithm(algo)
    except ValueError:
        raise ValueError(
            f"Unknown downsampling algorithm: {algo!r}, expected one of "
            f"{[a.value for a in Algorithm]}"
        ) from None
    result = _ALGORITHMS[algo](x, y, target, forced_indices)
    logger.debug(f"Downsampled {len(x)} -> {len(result)} points with {algo.value}")
    return result
