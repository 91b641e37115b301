import logging
import sys
from pathlib import Path

from jsonargparse import CLI
from rich import print as rprint

from heap_scope import init_logging
from heap_scope.downsample import Algorithm
from heap_scope.timeline import CorrelationEngine, InvalidCaptureError
from heap_scope.utils import (
    capture_json,
    correlation_table,
    group_table,
    summary_table,
)

logger = logging.getLogger(__name__)


def main(
    capture: Path,
    algo: Algorithm = Algorithm.BUCKET,
    target: int = 3000,
    json_out: Path | None = None,
    groups: bool = False,
    verbose: bool = False,
):
    """Analyze a merged heap capture and print per GC compaction estimates

    Args:
        capture: Merged capture file with 'phase1: heap use' and 'phase2: page dump' sections
        algo: Downsampling algorithm for the timeline view
        target: Target number of points for the downsampled timeline
        json_out: Optional path to write the full analysis as JSON for a chart layer
        groups: Also print per page group counts for every GC
        verbose: Log parsing details
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level)
    init_logging(level)
    try:
        engine = CorrelationEngine.from_capture(capture.read_text())
    except InvalidCaptureError as e:
        logger.error(f"{capture}: {e}")
        sys.exit(1)

    try:
        view = engine.downsample(algo, target)
    except ValueError as e:
        logger.error(f"{capture}: {e}")
        sys.exit(1)
    rprint(
        f"[bold green]{len(engine.timeline)}[/bold green] heap samples, "
        f"[bold green]{len(engine.gc_pairs)}[/bold green] GC pairs, "
        f"[bold green]{len(engine.markers)}[/bold green] markers, "
        f"downsampled to [bold]{len(view)}[/bold] points ({algo.value})"
    )

    if json_out is not None:
        json_out.write_text(capture_json(engine))
        logger.info(f"💾 Analysis saved to: {json_out}")

    analyses = engine.analyses()
    if not analyses:
        rprint("[yellow]No GC before/after pairs found.[/yellow]")
        return

    print(summary_table(analyses))
    print()
    print(correlation_table(engine.correlation_rows()))
    if groups:
        for analysis in analyses:
            print(f"\nGC {analysis.idx} page type counts")
            print(group_table(analysis.group_deltas()))


if __name__ == "__main__":
    """Sample usage:
    python scripts/analyze_capture.py test/data/sample_capture.txt --algo lttb --target 500
    """
    CLI(main)
