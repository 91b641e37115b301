import bisect
import logging
import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_HEAP_PHASE_RE = re.compile(r"^phase1:\s*heap use\s*$", re.IGNORECASE)
_DUMP_PHASE_RE = re.compile(r"^phase2:\s*page dump\s*$", re.IGNORECASE)
_BOOL_TOKENS = {"true": True, "false": False}


class InvalidCaptureError(ValueError):
    pass


@dataclass(frozen=True)
class HeapSample:
    index: int
    bytes: float
    timestamp: int | None = None
    is_gc: bool = False
    # Parse-time position of a sample without a timestamp; never rebased.
    ordinal: int | None = None

    @property
    def key(self) -> int:
        """Timestamp when present, otherwise the ordinal assigned at parse time."""
        if self.timestamp is not None:
            return self.timestamp
        return self.ordinal if self.ordinal is not None else self.index


class HeapTimeline:
    """Chronologically ordered heap samples with dense 1-based indices.

    Instances are immutable; ``insert_sample`` returns a new timeline.
    """

    def __init__(self, samples: Iterable[HeapSample] = ()):
        self._samples = tuple(samples)
        for pos, s in enumerate(self._samples, start=1):
            if s.index != pos:
                raise ValueError(f"Sample index {s.index} at position {pos}, indices must be dense")

    @classmethod
    def from_values(cls, values: Iterable[float], timestamps: Iterable[int] | None = None):
        if timestamps is None:
            return cls(HeapSample(i, float(v), ordinal=i) for i, v in enumerate(values, start=1))
        return cls(
            HeapSample(i, float(v), ts)
            for i, (v, ts) in enumerate(zip(values, timestamps, strict=True), start=1)
        )

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(self._samples)

    def __getitem__(self, index: int) -> HeapSample:
        """1-based access, matching sample indices."""
        if not 1 <= index <= len(self._samples):
            raise IndexError(f"Sample index {index} out of range 1..{len(self._samples)}")
        return self._samples[index - 1]

    def __eq__(self, other) -> bool:
        return isinstance(other, HeapTimeline) and self._samples == other._samples

    def __repr__(self) -> str:
        return f"HeapTimeline({len(self)} samples)"

    @property
    def samples(self) -> tuple[HeapSample, ...]:
        return self._samples

    @property
    def indices(self) -> list[int]:
        return [s.index for s in self._samples]

    @property
    def values(self) -> list[float]:
        return [s.bytes for s in self._samples]

    @property
    def keys(self) -> list[int]:
        return [s.key for s in self._samples]

    @property
    def inline_gc_indices(self) -> list[int]:
        return [s.index for s in self._samples if s.is_gc]

    @property
    def value_range(self) -> tuple[float, float]:
        if not self._samples:
            return 0.0, 0.0
        values = self.values
        return min(values), max(values)

    def key_lookup(self) -> dict[int, int]:
        return {s.key: s.index for s in self._samples}

    def insertion_point(self, ts: int) -> int:
        """1-based position of the first sample whose key exceeds ``ts``."""
        return bisect.bisect_right(self.keys, ts) + 1

    def estimate_bytes(self, position: int, ts: int) -> float:
        """Value for a sample inserted at ``position``, taken from the nearest neighbour."""
        prev = self._samples[position - 2] if position >= 2 else None
        nxt = self._samples[position - 1] if position <= len(self._samples) else None
        if prev is None and nxt is None:
            return 0.0
        if prev is None:
            return nxt.bytes
        if nxt is None:
            return prev.bytes
        return prev.bytes if ts - prev.key <= nxt.key - ts else nxt.bytes


def insert_sample(
    timeline: HeapTimeline,
    markers: Sequence[int],
    position: int,
    ts: int,
    value: float | None = None,
) -> tuple[HeapTimeline, list[int]]:
    """Inserts a sample at 1-based ``position`` and rebases every index after it.

    Args:
        timeline: The timeline to insert into, left untouched
        markers: 1-based sample indices recorded so far
        position: Where the new sample lands, 1..len(timeline) + 1
        ts: Timestamp of the new sample
        value: Byte count of the new sample, estimated from neighbours when None

    Returns:
        The new timeline and the markers shifted so they still name the same samples
    """
    if not 1 <= position <= len(timeline) + 1:
        raise ValueError(f"Insertion position {position} out of range 1..{len(timeline) + 1}")
    if value is None or not math.isfinite(value):
        value = timeline.estimate_bytes(position, ts)
    samples = list(timeline.samples[: position - 1])
    samples.append(HeapSample(position, float(value), ts))
    samples.extend(replace(s, index=s.index + 1) for s in timeline.samples[position - 1 :])
    rebased = [m + 1 if m >= position else m for m in markers]
    return HeapTimeline(samples), rebased


def _parse_bool(token: str) -> bool | None:
    return _BOOL_TOKENS.get(token.strip().lower())


def _parse_heap_line(line: str) -> tuple[int | None, float, bool] | None:
    parts = [p.strip() for p in line.split(",")]
    try:
        match parts:
            case [value, flag] if _parse_bool(flag) is not None:
                return None, float(value), _parse_bool(flag)
            case [ts, value]:
                return int(ts), float(value), False
            case [ts, value, flag] if _parse_bool(flag) is not None:
                return int(ts), float(value), _parse_bool(flag)
    except ValueError:
        pass
    return None


def parse_heap_lines(lines: Iterable[str]) -> HeapTimeline:
    """Parses heap use lines into a timeline.

    Accepted forms are ``<bytes>, <true|false>`` (inline GC flag, no timestamp),
    ``<ts_us>, <bytes>`` and ``<ts_us>, <bytes>, <true|false>``. Lines that do not
    parse, and timestamps that do not strictly increase, are skipped.
    """
    samples: list[HeapSample] = []
    skipped = 0
    last_key: int | None = None
    for line in lines:
        if not line.strip():
            continue
        parsed = _parse_heap_line(line)
        if parsed is None or not math.isfinite(parsed[1]):
            skipped += 1
            continue
        ts, value, is_gc = parsed
        index = len(samples) + 1
        key = ts if ts is not None else index
        if last_key is not None and key <= last_key:
            skipped += 1
            continue
        samples.append(HeapSample(index, value, ts, is_gc, ordinal=None if ts is not None else index))
        last_key = key
    if skipped:
        logger.debug(f"Skipped {skipped} heap lines that did not parse or were out of order")
    return HeapTimeline(samples)


def split_capture(text: str) -> tuple[list[str], str]:
    """Splits a merged capture into its heap use lines and page dump text.

    Raises:
        InvalidCaptureError: If either phase marker is missing or they are out of order
    """
    lines = text.splitlines()
    heap_idx = next((i for i, l in enumerate(lines) if _HEAP_PHASE_RE.match(l.strip())), None)
    dump_idx = next((i for i, l in enumerate(lines) if _DUMP_PHASE_RE.match(l.strip())), None)
    if heap_idx is None or dump_idx is None or dump_idx <= heap_idx:
        raise InvalidCaptureError("Invalid merged file format: missing phase markers")
    heap_lines = [l for l in lines[heap_idx + 1 : dump_idx] if l.strip()]
    return heap_lines, "\n".join(lines[dump_idx + 1 :])
