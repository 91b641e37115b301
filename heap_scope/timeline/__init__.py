from heap_scope.timeline.samples import (
    HeapSample,
    HeapTimeline,
    insert_sample,
    InvalidCaptureError,
    parse_heap_lines,
    split_capture,
)
from heap_scope.timeline.correlator import (
    correlate_by_position,
    CorrelationEngine,
    CorrelationRow,
    focus_window,
    GCMarkers,
    map_gc_pairs_to_timeline,
    simulated_overlay,
)
