import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from heap_scope.compaction import analyze_pair, PairAnalysis
from heap_scope.downsample import (
    Algorithm,
    downsample,
    DownsampleConfig,
    MIN_TARGET,
    Series,
)
from heap_scope.dump import BlockType, GCPair, pair_blocks, parse_blocks
from heap_scope.timeline.samples import (
    HeapTimeline,
    insert_sample,
    parse_heap_lines,
    split_capture,
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

MARKER_OFFSET_FRACTION = 1e-4


@dataclass
class GCMarkers:
    """GC event markers on a timeline.

    ``indices`` holds 1-based sample indices, one per marker. ``positions`` maps a
    GC index to the marker positions (indices into ``indices``) that belong to it,
    before-then-after.
    """

    indices: list[int] = field(default_factory=list)
    raw_values: list[float] = field(default_factory=list)
    values: list[float] = field(default_factory=list)
    phases: list[BlockType] = field(default_factory=list)
    positions: dict[int, list[int]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.indices)

    def sample_indices_for(self, gc_idx: int) -> list[int]:
        return [self.indices[p] for p in self.positions.get(gc_idx, [])]

    def after_index(self, gc_idx: int) -> int | None:
        for p in self.positions.get(gc_idx, []):
            if self.phases[p] is BlockType.AFTER:
                return self.indices[p]
        return None


@dataclass
class CorrelationRow:
    gc_idx: int
    sample_index: int | None


def _finish_markers(
    timeline: HeapTimeline,
    indices: list[int],
    phases: list[BlockType],
    positions: dict[int, list[int]],
) -> GCMarkers:
    lo, hi = timeline.value_range
    # Cosmetic only, separates markers from the line they sit on.
    offset = (hi - lo) * MARKER_OFFSET_FRACTION
    raw = [timeline[i].bytes for i in indices]
    return GCMarkers(
        indices=indices,
        raw_values=raw,
        values=[v + offset for v in raw],
        phases=phases,
        positions=dict(positions),
    )


def _has_heap_metadata(gc_pairs: Iterable[GCPair]) -> bool:
    return any(b.heap_dump is not None for p in gc_pairs for b in p.blocks())


def correlate_by_position(timeline: HeapTimeline, gc_pairs: Iterable[GCPair]) -> GCMarkers:
    """Legacy correlation for captures without heap metadata in their dumps.

    The timeline's inline GC samples become the markers, and the n-th marker is
    assigned to the n-th pair by GC index as that GC's after marker.
    """
    indices = timeline.inline_gc_indices
    phases = [BlockType.AFTER] * len(indices)
    positions: dict[int, list[int]] = {}
    for pos, gc_idx in enumerate(sorted(p.idx for p in gc_pairs)):
        if pos >= len(indices):
            break
        positions[gc_idx] = [pos]
    return _finish_markers(timeline, indices, phases, positions)


def map_gc_pairs_to_timeline(
    timeline: HeapTimeline, gc_pairs: Iterable[GCPair]
) -> tuple[HeapTimeline, GCMarkers]:
    """Places every GC dump that carries heap metadata on the timeline.

    A dump whose timestamp matches a sample key uses that sample; otherwise a new
    sample is inserted at the first key greater than the timestamp and all earlier
    markers at or after that point are rebased. Running it again on the returned
    timeline with the same pairs inserts nothing and yields the same markers.

    Returns:
        The (possibly extended) timeline and the resulting markers
    """
    gc_pairs = sorted(gc_pairs, key=lambda p: p.idx)
    if not _has_heap_metadata(gc_pairs):
        return timeline, correlate_by_position(timeline, gc_pairs)

    indices: list[int] = []
    phases: list[BlockType] = []
    positions: dict[int, list[int]] = defaultdict(list)
    lookup = timeline.key_lookup()
    inserted = 0

    for pair in gc_pairs:
        for block in pair.blocks():
            dump = block.heap_dump
            if dump is None:
                continue
            sample_index = lookup.get(dump.ts)
            if sample_index is None:
                sample_index = timeline.insertion_point(dump.ts)
                timeline, indices = insert_sample(
                    timeline, indices, sample_index, dump.ts, dump.bytes
                )
                lookup = timeline.key_lookup()
                inserted += 1
                logger.debug(
                    f"Inserted sample at {sample_index} for {block.type.value} GC {pair.idx} (ts={dump.ts})"
                )
            positions[pair.idx].append(len(indices))
            indices.append(sample_index)
            phases.append(block.type)

    if inserted:
        logger.info(f"Inserted {inserted} heap samples for GC dumps without an exact timestamp match")
    return timeline, _finish_markers(timeline, indices, phases, positions)


def simulated_overlay(markers: GCMarkers, analyses: Iterable[PairAnalysis]) -> Series:
    """Simulated compacted heap bytes at each GC's after marker, ordered by sample index."""
    points = []
    for analysis in analyses:
        sample_index = markers.after_index(analysis.idx)
        if sample_index is None or analysis.simulated_bytes is None:
            continue
        points.append((sample_index, analysis.simulated_bytes))
    points.sort(key=lambda p: p[0])
    return Series([p[0] for p in points], [p[1] for p in points])


def focus_window(sample_index: int, total: int) -> tuple[int, int]:
    """A window of samples centred on ``sample_index`` and clamped to ``[1, total]``."""
    size = max(50, round(total * 0.05))
    start = sample_index - size // 2
    end = sample_index + size // 2
    if start < 1:
        end += 1 - start
        start = 1
    if end > total:
        start = max(1, start - (end - total))
        end = total
    return start, end


class CorrelationEngine:
    """Owns one heap timeline and its GC markers for a single loaded capture.

    Handlers registered with ``on`` are called with the engine after each
    recomputation: ``timeline_changed``, ``markers_changed`` and ``downsampled``.
    """

    EVENTS = ("timeline_changed", "markers_changed", "downsampled")

    def __init__(
        self,
        timeline: HeapTimeline,
        gc_pairs: Iterable[GCPair] = (),
        config: DownsampleConfig | None = None,
    ):
        self._timeline = timeline
        self._gc_pairs: list[GCPair] = list(gc_pairs)
        self._markers = GCMarkers()
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
        self._analyses: list[PairAnalysis] | None = None
        self.config = config or DownsampleConfig()
        self._view: Series | None = None
        self.remap()

    @classmethod
    def from_capture(cls, text: str, config: DownsampleConfig | None = None) -> "CorrelationEngine":
        """Builds an engine from a merged capture.

        Raises:
            InvalidCaptureError: If the capture's phase markers are missing
        """
        heap_lines, dump_text = split_capture(text)
        timeline = parse_heap_lines(heap_lines)
        gc_pairs = pair_blocks(parse_blocks(dump_text))
        logger.info(f"Loaded heap samples: {len(timeline)}, GC pairs: {len(gc_pairs)}")
        return cls(timeline, gc_pairs, config)

    def on(self, event: str, handler: Callable[["CorrelationEngine"], None]) -> None:
        if event not in self.EVENTS:
            raise ValueError(f"Unknown event {event!r}, expected one of {self.EVENTS}")
        self._handlers[event].append(handler)

    def _emit(self, event: str) -> None:
        for handler in self._handlers[event]:
            handler(self)

    @property
    def timeline(self) -> HeapTimeline:
        return self._timeline

    @property
    def gc_pairs(self) -> list[GCPair]:
        return list(self._gc_pairs)

    @property
    def markers(self) -> GCMarkers:
        return self._markers

    def load_pairs(self, gc_pairs: Iterable[GCPair]) -> None:
        """Replaces the GC pairs. Pass the complete current set, not just new pairs."""
        self._gc_pairs = list(gc_pairs)
        self.remap()

    def remap(self) -> None:
        before = len(self._timeline)
        self._timeline, self._markers = map_gc_pairs_to_timeline(self._timeline, self._gc_pairs)
        self._analyses = None
        if len(self._timeline) != before:
            self._emit("timeline_changed")
        self._emit("markers_changed")
        if self.config.active and self._view is not None:
            self._apply_downsampling()

    def markers_for_gc(self, gc_idx: int) -> list[int]:
        return self._markers.sample_indices_for(gc_idx)

    def after_marker(self, gc_idx: int) -> int | None:
        return self._markers.after_index(gc_idx)

    def analyses(self) -> list[PairAnalysis]:
        if self._analyses is None:
            analyses = []
            for pair in self._gc_pairs:
                sample_index = self.after_marker(pair.idx)
                heap_bytes = None if sample_index is None else self._timeline[sample_index].bytes
                analyses.append(analyze_pair(pair, heap_bytes))
            self._analyses = analyses
        return list(self._analyses)

    def simulated_overlay(self) -> Series:
        return simulated_overlay(self._markers, self.analyses())

    def correlation_rows(self) -> list[CorrelationRow]:
        rows = []
        for gc_idx in sorted(p.idx for p in self._gc_pairs):
            indices = self.markers_for_gc(gc_idx)
            rows.append(CorrelationRow(gc_idx, indices[-1] if indices else None))
        return rows

    def focus_window(self, gc_idx: int) -> tuple[int, int] | None:
        indices = self.markers_for_gc(gc_idx)
        if not indices:
            return None
        return focus_window(indices[0], len(self._timeline))

    def _apply_downsampling(self) -> None:
        forced = {i - 1 for i in self._markers.indices}
        self._view = downsample(
            self._timeline.indices,
            self._timeline.values,
            self.config.target,
            forced,
            self.config.algo,
        )
        self._emit("downsampled")

    def downsample(self, algo: Algorithm | str | None = None, target: int | None = None) -> Series:
        algo = self.config.algo if algo is None else Algorithm(algo)
        target = self.config.target if target is None else target
        if target < MIN_TARGET:
            raise ValueError(f"Downsampling target must be >= {MIN_TARGET}, got {target}")
        self.config.algo = algo
        self.config.target = target
        self.config.active = True
        self._apply_downsampling()
        return self._view

    def show_original(self) -> Series:
        self.config.active = False
        return self.current_series()

    def current_series(self) -> Series:
        """The timeline as currently displayed, downsampled or original."""
        if self.config.active:
            if self._view is None:
                self._apply_downsampling()
            return self._view
        return Series(list(self._timeline.indices), self._timeline.values)
