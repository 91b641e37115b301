from pathlib import Path

import pytest

from heap_scope.downsample import Algorithm, Series
from heap_scope.dump import BlockType, DumpBlock, GCPair, HeapDump
from heap_scope.timeline import (
    CorrelationEngine,
    focus_window,
    HeapSample,
    HeapTimeline,
    insert_sample,
    InvalidCaptureError,
    map_gc_pairs_to_timeline,
    parse_heap_lines,
    split_capture,
)


DATA_DIR = Path(__file__).parent / "data"
CAPTURE_PATH = DATA_DIR / "sample_capture.txt"


@pytest.fixture
def capture_text():
    return CAPTURE_PATH.read_text()


def _make_timeline(values, timestamps=None):
    return HeapTimeline.from_values(values, timestamps)


def _make_pair(idx, before=None, after=None, before_lines=("16: +",), after_lines=("16: (50%)",)):
    """``before``/``after`` are ``(ts, bytes)`` tuples or None for no heap metadata."""

    def block(type, dump, lines):
        heap_dump = None if dump is None else HeapDump(*dump)
        return DumpBlock(type, idx, list(lines), heap_dump)

    return GCPair(
        idx=idx,
        before=block(BlockType.BEFORE, before, before_lines),
        after=block(BlockType.AFTER, after, after_lines),
    )


def _assert_dense_and_ordered(timeline):
    assert timeline.indices == list(range(1, len(timeline) + 1))
    keys = timeline.keys
    assert all(a < b for a, b in zip(keys, keys[1:]))


class TestParseHeapLines:
    def test_legacy_inline_flags(self):
        timeline = parse_heap_lines(["100,false", "150,true", "90,false"])
        assert timeline.values == [100, 150, 90]
        assert timeline.inline_gc_indices == [2]
        assert [s.timestamp for s in timeline] == [None, None, None]
        assert timeline.keys == [1, 2, 3]

    def test_timestamped(self):
        timeline = parse_heap_lines(["1000, 5", "2000, 6.5", "3000, 7, true"])
        assert timeline.keys == [1000, 2000, 3000]
        assert timeline.values == [5, 6.5, 7]
        assert timeline.inline_gc_indices == [3]

    def test_bad_lines_skipped_and_indices_dense(self):
        timeline = parse_heap_lines(["10, 1", "oops", "", "20, x", "30, 3", "40", "50, 5, maybe"])
        assert timeline.values == [1, 3]
        _assert_dense_and_ordered(timeline)

    def test_out_of_order_timestamps_skipped(self):
        timeline = parse_heap_lines(["10, 1", "30, 3", "20, 2", "30, 4", "40, 5"])
        assert timeline.keys == [10, 30, 40]

    def test_empty(self):
        timeline = parse_heap_lines([])
        assert len(timeline) == 0
        assert timeline.value_range == (0.0, 0.0)


class TestSplitCapture:
    def test_split(self):
        text = "header\nPhase1: Heap Use\n1, 2\n\n3, 4\n  phase2:  page dump \n---- before GC 1 ----"
        heap_lines, dump_text = split_capture(text)
        assert heap_lines == ["1, 2", "3, 4"]
        assert dump_text == "---- before GC 1 ----"

    @pytest.mark.parametrize(
        "text",
        [
            "1, 2\n3, 4",
            "phase1: heap use\n1, 2",
            "phase2: page dump\nphase1: heap use\n1, 2",
        ],
    )
    def test_missing_markers(self, text):
        with pytest.raises(InvalidCaptureError, match="missing phase markers"):
            split_capture(text)


class TestHeapTimeline:
    def test_rejects_sparse_indices(self):
        with pytest.raises(ValueError, match="dense"):
            HeapTimeline([HeapSample(1, 1.0), HeapSample(3, 2.0)])

    def test_one_based_access(self):
        timeline = _make_timeline([10, 20, 30])
        assert timeline[1].bytes == 10
        assert timeline[3].bytes == 30
        with pytest.raises(IndexError):
            timeline[0]

    def test_insertion_point(self):
        timeline = _make_timeline([1, 2, 3], [100, 200, 300])
        assert timeline.insertion_point(50) == 1
        assert timeline.insertion_point(150) == 2
        assert timeline.insertion_point(300) == 4
        assert timeline.insertion_point(999) == 4


class TestInsertSample:
    def test_rebases_indices_and_markers(self):
        timeline = _make_timeline([1, 2, 3, 4], [10, 20, 30, 40])
        new, markers = insert_sample(timeline, [1, 2, 3, 4], 3, 25, 9.0)
        assert new.keys == [10, 20, 25, 30, 40]
        assert new.values == [1, 2, 9, 3, 4]
        assert markers == [1, 2, 4, 5]
        _assert_dense_and_ordered(new)
        # Input left untouched.
        assert timeline.keys == [10, 20, 30, 40]

    def test_markers_still_name_the_same_samples(self):
        timeline = _make_timeline([5, 6, 7], [10, 20, 30])
        markers = [3, 1]
        new, rebased = insert_sample(timeline, markers, 2, 15, 0.5)
        assert [new[m].timestamp for m in rebased] == [timeline[m].timestamp for m in markers]

    @pytest.mark.parametrize(
        "position, ts, expected",
        [
            (1, 5, 100.0),
            (4, 99, 300.0),
            (2, 12, 100.0),
            (2, 18, 200.0),
            (2, 15, 100.0),
        ],
    )
    def test_missing_bytes_use_nearest_neighbour(self, position, ts, expected):
        timeline = _make_timeline([100, 200, 300], [10, 20, 30])
        new, _ = insert_sample(timeline, [], position, ts, None)
        assert new[position].bytes == expected

    def test_missing_bytes_without_neighbours(self):
        new, _ = insert_sample(HeapTimeline(), [], 1, 5, float("nan"))
        assert new.values == [0.0]

    def test_bad_position(self):
        with pytest.raises(ValueError, match="out of range"):
            insert_sample(_make_timeline([1]), [], 3, 5, 1.0)


class TestMapGcPairs:
    def test_legacy_example(self):
        timeline = parse_heap_lines(["100,false", "150,true", "90,false"])
        pair = _make_pair(1, after=(2, None))
        new, markers = map_gc_pairs_to_timeline(timeline, [pair])
        assert markers.indices == [2]
        assert markers.raw_values == [150]
        assert new == timeline

    def test_legacy_keys_survive_earlier_insertion(self):
        timeline = parse_heap_lines(["100,false", "150,true", "90,false"])
        pairs = [_make_pair(1, before=(0, 5)), _make_pair(2, after=(2, None))]
        new, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert new.keys == [0, 1, 2, 3]
        assert markers.indices == [1, 3]
        assert markers.raw_values == [5, 150]
        again, same = map_gc_pairs_to_timeline(new, pairs)
        assert again == new
        assert same == markers

    def test_exact_matches(self):
        timeline = _make_timeline([10, 50, 20, 60, 30], [1, 2, 3, 4, 5])
        pairs = [_make_pair(2, (4, 60), (5, 30)), _make_pair(1, (2, 50), (3, 20))]
        new, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert new == timeline
        assert markers.indices == [2, 3, 4, 5]
        assert markers.positions == {1: [0, 1], 2: [2, 3]}
        assert markers.phases == [BlockType.BEFORE, BlockType.AFTER] * 2
        assert markers.after_index(2) == 5
        assert markers.sample_indices_for(1) == [2, 3]

    def test_insertion_shifts_earlier_markers(self):
        timeline = _make_timeline([10, 20, 30, 40], [100, 200, 300, 400])
        # GC 1 lands late, GC 2 carries a timestamp that belongs before it.
        pairs = [_make_pair(1, (300, 30), (400, 40)), _make_pair(2, (150, 15), (200, 20))]
        new, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert new.keys == [100, 150, 200, 300, 400]
        assert markers.indices == [4, 5, 2, 3]
        assert markers.raw_values == [30, 40, 15, 20]
        _assert_dense_and_ordered(new)
        for gc_idx, expected in {1: [300, 400], 2: [150, 200]}.items():
            assert [new[i].timestamp for i in markers.sample_indices_for(gc_idx)] == expected

    def test_insert_at_end_and_start(self):
        timeline = _make_timeline([10, 20], [100, 200])
        pairs = [_make_pair(1, (50, 5), (500, None))]
        new, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert new.keys == [50, 100, 200, 500]
        assert markers.indices == [1, 4]
        assert markers.raw_values == [5, 20]

    def test_idempotent(self):
        timeline = _make_timeline([10, 20, 30, 40], [100, 200, 300, 400])
        pairs = [_make_pair(1, (300, 30), (350, 33)), _make_pair(2, (150, 15), (200, 20))]
        first_timeline, first = map_gc_pairs_to_timeline(timeline, pairs)
        second_timeline, second = map_gc_pairs_to_timeline(first_timeline, pairs)
        assert second_timeline == first_timeline
        assert second == first

    def test_pair_without_metadata_has_no_markers(self):
        timeline = _make_timeline([10, 20], [100, 200])
        pairs = [_make_pair(1, (100, 10), (200, 20)), _make_pair(2)]
        _, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert markers.positions == {1: [0, 1]}
        assert markers.sample_indices_for(2) == []
        assert markers.after_index(2) is None

    def test_positional_fallback(self):
        timeline = parse_heap_lines(["1,false", "5,true", "2,false", "6,true", "3,true"])
        pairs = [_make_pair(9), _make_pair(4)]
        _, markers = map_gc_pairs_to_timeline(timeline, pairs)
        assert markers.indices == [2, 4, 5]
        assert markers.positions == {4: [0], 9: [1]}
        assert markers.after_index(9) == 4

    def test_marker_offset(self):
        timeline = _make_timeline([0, 10000], [1, 2])
        _, markers = map_gc_pairs_to_timeline(timeline, [_make_pair(1, after=(2, 10000))])
        assert markers.values == [pytest.approx(10001)]

    def test_empty(self):
        new, markers = map_gc_pairs_to_timeline(HeapTimeline(), [])
        assert len(new) == 0
        assert len(markers) == 0


class TestFocusWindow:
    def test_centered(self):
        assert focus_window(500, 1000) == (475, 525)

    def test_clamped_at_start(self):
        assert focus_window(3, 1000) == (1, 51)

    def test_clamped_at_end(self):
        assert focus_window(999, 1000) == (950, 1000)

    def test_short_timeline(self):
        assert focus_window(5, 10) == (1, 10)

    def test_scales_with_total(self):
        start, end = focus_window(5000, 10000)
        assert end - start == 500


class TestCorrelationEngine:
    def test_from_capture(self, capture_text):
        engine = CorrelationEngine.from_capture(capture_text)
        assert [p.idx for p in engine.gc_pairs] == [1, 2]
        # The GC 1 after dump at ts 3500 was inserted between 3000 and 4000.
        assert engine.timeline.keys == [1000, 2000, 3000, 3500, 4000, 5000, 6000]
        assert engine.markers.indices == [3, 4, 6, 7]
        assert engine.markers_for_gc(1) == [3, 4]
        assert engine.after_marker(2) == 7
        assert engine.timeline[4].bytes == 1600000

    def test_invalid_capture(self):
        with pytest.raises(InvalidCaptureError):
            CorrelationEngine.from_capture("1, 2\n3, 4\n")

    def test_analyses_and_overlay(self, capture_text):
        engine = CorrelationEngine.from_capture(capture_text)
        analyses = {a.idx: a for a in engine.analyses()}
        gc1 = analyses[1].summary
        assert (gc1.pages_before, gc1.pages_after, gc1.pages_released) == (8, 5, 3)
        assert gc1.occupancy_after == pytest.approx(73)
        assert analyses[1].heap_bytes == 1600000
        assert analyses[1].simulated_bytes == pytest.approx(1168000)

        overlay = engine.simulated_overlay()
        assert overlay.x == [4, 7]
        assert overlay.y[0] == pytest.approx(1168000)
        assert overlay.y[1] == pytest.approx(1310720 * 190 / 300)

    def test_remap_is_idempotent(self, capture_text):
        engine = CorrelationEngine.from_capture(capture_text)
        timeline = engine.timeline
        markers = engine.markers
        engine.remap()
        assert engine.timeline == timeline
        assert engine.markers == markers

    def test_load_pairs_replaces_set(self):
        engine = CorrelationEngine(_make_timeline([10, 20, 30], [100, 200, 300]))
        engine.load_pairs([_make_pair(1, (100, 10), (250, 25))])
        assert engine.timeline.keys == [100, 200, 250, 300]
        engine.load_pairs([_make_pair(1, (100, 10), (250, 25)), _make_pair(2, (300, 30), (300, 30))])
        assert engine.timeline.keys == [100, 200, 250, 300]
        assert engine.markers.indices == [1, 3, 4, 4]

    def test_events(self):
        engine = CorrelationEngine(_make_timeline(list(range(500)), list(range(0, 5000, 10))))
        seen = []
        for event in CorrelationEngine.EVENTS:
            engine.on(event, lambda e, event=event: seen.append(event))
        engine.downsample("lttb", 100)
        assert seen == ["downsampled"]
        seen.clear()
        engine.load_pairs([_make_pair(1, (15, 1.5), (20, 2))])
        assert seen == ["timeline_changed", "markers_changed", "downsampled"]

    def test_unknown_event(self):
        engine = CorrelationEngine(HeapTimeline())
        with pytest.raises(ValueError, match="Unknown event"):
            engine.on("clicked", print)

    def test_downsample_forces_markers(self):
        values = [float(i % 37) for i in range(5000)]
        engine = CorrelationEngine(_make_timeline(values, list(range(5000))))
        engine.load_pairs([_make_pair(1, (1234, None), (1235, None))])
        for algo in Algorithm:
            view = engine.downsample(algo, 200)
            assert len(view) <= 200
            assert {1235, 1236} <= set(view.x)
        assert engine.config.algo is Algorithm.LTTB

    def test_downsample_target_validation(self):
        engine = CorrelationEngine(_make_timeline([1, 2, 3]))
        with pytest.raises(ValueError, match="target must be >= 100"):
            engine.downsample("bucket", 10)

    def test_show_original_and_back(self):
        values = list(range(1000))
        engine = CorrelationEngine(_make_timeline(values))
        downsampled = engine.downsample("bucket", 100)
        assert len(downsampled) <= 100
        original = engine.show_original()
        assert original == Series(list(range(1, 1001)), values)
        assert engine.current_series() == original
        assert engine.downsample() == downsampled

    def test_focus_centres_on_first_marker(self):
        engine = CorrelationEngine(
            _make_timeline([1.0] * 1000, list(range(1000))),
            [_make_pair(1, (100, 1.0), (900, 1.0))],
        )
        assert engine.markers_for_gc(1) == [101, 901]
        assert engine.focus_window(1) == (76, 126)

    def test_correlation_rows_and_focus(self):
        engine = CorrelationEngine(
            _make_timeline([1, 2, 3], [10, 20, 30]),
            [_make_pair(2, after=(30, 3)), _make_pair(1)],
        )
        rows = engine.correlation_rows()
        assert [(r.gc_idx, r.sample_index) for r in rows] == [(1, None), (2, 3)]
        assert engine.focus_window(2) == (1, 3)
        assert engine.focus_window(1) is None
