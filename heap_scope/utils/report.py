import json
from dataclasses import asdict

from tabulate import tabulate

from heap_scope.compaction import PairAnalysis
from heap_scope.dump import GroupDelta
from heap_scope.timeline import CorrelationEngine, CorrelationRow
from heap_scope.utils.format import format_bytes, format_delta


def _maybe_bytes(value: float | None) -> str:
    return "N/A" if value is None else format_bytes(value)


def summary_table(analyses: list[PairAnalysis], tablefmt: str = "github") -> str:
    rows = []
    for a in sorted(analyses, key=lambda a: a.idx):
        s = a.summary
        rows.append(
            {
                "GC": a.idx,
                "pages before": s.pages_before,
                "pages after": s.pages_after,
                "released": s.pages_released,
                "occupancy before %": f"{s.occupancy_before:.2f}",
                "occupancy after %": f"{s.occupancy_after:.2f}",
                "change pp": format_delta(s.delta_occupancy),
                "heap": _maybe_bytes(a.heap_bytes),
                "compacted": _maybe_bytes(a.simulated_bytes),
                "reduction": _maybe_bytes(a.reduction_bytes),
            }
        )
    return tabulate(rows, headers="keys", tablefmt=tablefmt, disable_numparse=True)


def group_table(deltas: list[GroupDelta], tablefmt: str = "github") -> str:
    rows = [
        [
            d.label,
            d.count_before,
            d.count_after,
            format_delta(d.diff, precision=0),
            f"{d.mean_before:.0f}",
            f"{d.mean_after:.0f}",
        ]
        for d in deltas
    ]
    headers = ["group", "before", "after", "diff", "mean before %", "mean after %"]
    return tabulate(rows, headers=headers, tablefmt=tablefmt, disable_numparse=True)


def correlation_table(rows: list[CorrelationRow], tablefmt: str = "github") -> str:
    table = [
        [f"GC {r.gc_idx}", "no marker" if r.sample_index is None else f"heap@{r.sample_index}"]
        for r in rows
    ]
    return tabulate(table, headers=["GC", "sample"], tablefmt=tablefmt)


def _distribution_payload(dist) -> dict[str, list[float]]:
    return {key: [u.value for u in usages] for key, usages in dist.items()}


def capture_payload(engine: CorrelationEngine) -> dict:
    """Everything a chart layer needs, as plain JSON-serialisable data."""
    timeline = engine.timeline
    markers = engine.markers
    view = engine.current_series()
    overlay = engine.simulated_overlay()
    analyses = engine.analyses()
    lo, hi = timeline.value_range

    meta = {
        "num_samples": len(timeline),
        "num_gc_pairs": len(engine.gc_pairs),
        "num_markers": len(markers),
        "min_bytes": lo,
        "max_bytes": hi,
        "downsample": {
            "algo": engine.config.algo.value,
            "target": engine.config.target,
            "active": engine.config.active,
            "points": len(view),
        },
    }
    return {
        "meta": meta,
        "timeline": {"x": timeline.indices, "y": timeline.values},
        "view": {"x": view.x, "y": view.y},
        "markers": {
            "x": markers.indices,
            "y": markers.values,
            "raw": markers.raw_values,
            "positions": {str(k): v for k, v in markers.positions.items()},
        },
        "simulated": {"x": overlay.x, "y": overlay.y},
        "pairs": [
            {
                "idx": a.idx,
                "summary": asdict(a.summary),
                "keys": a.keys,
                "grid_size": a.grid_size,
                "heap_bytes": a.heap_bytes,
                "simulated_bytes": a.simulated_bytes,
                "before": _distribution_payload(a.before),
                "after": _distribution_payload(a.after),
                "optimized_before": _distribution_payload(a.optimized_before),
                "optimized_after": _distribution_payload(a.optimized_after),
            }
            for a in analyses
        ],
    }


def capture_json(engine: CorrelationEngine, indent: int | None = None) -> str:
    return json.dumps(capture_payload(engine), indent=indent)
