import logging
import math
from dataclasses import dataclass, field

from heap_scope.dump import (
    COMPACTED_KEY,
    compare_groups,
    GCPair,
    GroupDelta,
    ordered_keys,
    PageDistribution,
    PageKind,
    PageUsage,
    parse_distribution,
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_COMPACTED_NAME = "compact"


@dataclass
class Summary:
    pages_before: int = 0
    pages_after: int = 0
    pages_released: int = 0
    occupancy_before: float = 0.0
    occupancy_after: float = 0.0
    delta_occupancy: float = 0.0


@dataclass
class PairAnalysis:
    idx: int
    before: PageDistribution
    after: PageDistribution
    optimized_before: PageDistribution
    optimized_after: PageDistribution
    summary: Summary
    keys: list[str] = field(default_factory=list)
    grid_size: int = 0
    heap_bytes: float | None = None
    simulated_bytes: float | None = None

    @property
    def reduction_bytes(self) -> float | None:
        """Estimated memory reduction if the after-GC heap were perfectly compacted."""
        if self.heap_bytes is None or self.simulated_bytes is None:
            return None
        return self.heap_bytes - self.simulated_bytes

    def group_deltas(self) -> list[GroupDelta]:
        return compare_groups(self.before, self.after)


def simulate_compaction(distribution: PageDistribution) -> PageDistribution:
    """Packs every live percent into the fewest fully dense pages.

    Returns a single ``Compacted`` group of full pages plus at most one partial page.
    """
    total = sum(u.value for usages in distribution.values() for u in usages)
    if total == 0:
        return {COMPACTED_KEY: []}
    full_pages = math.floor(total / 100)
    remainder = round(total - full_pages * 100, 2)
    pages = [PageUsage(PageKind.COMPACTED, _COMPACTED_NAME, 100.0) for _ in range(full_pages)]
    if remainder > 0:
        pages.append(PageUsage(PageKind.COMPACTED, _COMPACTED_NAME, remainder))
    return {COMPACTED_KEY: pages}


def count_total_pages(distribution: PageDistribution) -> int:
    return sum(len(usages) for usages in distribution.values())


def grid_size(*distributions: PageDistribution) -> int:
    """Side of the square grid that fits the largest of the given distributions."""
    largest = max((count_total_pages(d) for d in distributions), default=0)
    return math.ceil(math.sqrt(largest))


def _aggregate(distribution: PageDistribution) -> tuple[int, float]:
    pages = 0
    total = 0.0
    for usages in distribution.values():
        for u in usages:
            pages += 1
            total += u.value
    return pages, (total / pages if pages else 0.0)


def compute_summary(before: PageDistribution, after: PageDistribution) -> Summary:
    pages_before, mean_before = _aggregate(before)
    pages_after, mean_after = _aggregate(after)
    # Only per-group decreases count; growth in one group never offsets another.
    released = 0
    for key in before.keys() | after.keys():
        released += max(0, len(before.get(key, [])) - len(after.get(key, [])))
    return Summary(
        pages_before=pages_before,
        pages_after=pages_after,
        pages_released=released,
        occupancy_before=mean_before,
        occupancy_after=mean_after,
        delta_occupancy=mean_after - mean_before,
    )


def simulated_bytes(heap_bytes: float, summary: Summary) -> float:
    return heap_bytes * summary.occupancy_after / 100


def analyze_pair(pair: GCPair, heap_bytes: float | None = None) -> PairAnalysis:
    """Parses both dumps of a GC pair and derives compaction and summary data.

    Args:
        pair: The matched before/after dump blocks
        heap_bytes: Heap size at the pair's after-GC marker, if the timeline has one

    Returns:
        A PairAnalysis whose ``simulated_bytes`` is set only when ``heap_bytes`` is known
    """
    before = parse_distribution(pair.before.content)
    after = parse_distribution(pair.after.content)
    optimized_before = simulate_compaction(before)
    optimized_after = simulate_compaction(after)
    summary = compute_summary(before, after)
    return PairAnalysis(
        idx=pair.idx,
        before=before,
        after=after,
        optimized_before=optimized_before,
        optimized_after=optimized_after,
        summary=summary,
        keys=ordered_keys(before, after),
        grid_size=grid_size(before, after, optimized_before, optimized_after),
        heap_bytes=heap_bytes,
        simulated_bytes=None if heap_bytes is None else simulated_bytes(heap_bytes, summary),
    )
