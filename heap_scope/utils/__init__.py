from heap_scope.utils.format import format_bytes, format_delta
from heap_scope.utils.report import (
    capture_json,
    capture_payload,
    correlation_table,
    group_table,
    summary_table,
)
