from heap_scope.dump.blocks import (
    BlockType,
    DumpBlock,
    GCPair,
    HeapDump,
    pair_blocks,
    parse_blocks,
    parse_heap_dump,
)
from heap_scope.dump.distribution import (
    COMPACTED_KEY,
    compare_groups,
    GroupDelta,
    kind_order,
    ordered_keys,
    PageDistribution,
    PageKind,
    PageUsage,
    parse_distribution,
    parse_page_usages,
)
