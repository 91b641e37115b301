import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_HEADER_RE = re.compile(r"-+\s*(before|after)\s+GC\s+(\d+)\s*-+")
_HEAP_DUMP_RE = re.compile(r"^\s*heap[_ ]?dump\s*:\s*([^,]*?)\s*(?:,\s*(.*?)\s*)?$", re.IGNORECASE)


class BlockType(Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class HeapDump:
    ts: int
    bytes: float | None = None


@dataclass
class DumpBlock:
    type: BlockType
    idx: int
    content: list[str] = field(default_factory=list)
    heap_dump: HeapDump | None = None


@dataclass
class GCPair:
    idx: int
    before: DumpBlock
    after: DumpBlock

    def blocks(self) -> tuple[DumpBlock, DumpBlock]:
        return self.before, self.after


def _parse_bytes(text: str | None) -> float | None:
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def parse_heap_dump(line: str) -> HeapDump | None:
    """Parse a ``heapDump: <ts_us>[, <bytes>]`` metadata line.

    Returns None when the timestamp does not parse. Missing or invalid bytes are
    kept as None so the timeline can estimate them from neighbouring samples.
    """
    m = _HEAP_DUMP_RE.match(line)
    if m is None:
        return None
    try:
        ts = int(m.group(1))
    except ValueError:
        logger.debug(f"Dropping heap dump line with bad timestamp: {line!r}")
        return None
    return HeapDump(ts=ts, bytes=_parse_bytes(m.group(2)))


def parse_blocks(text: str) -> list[DumpBlock]:
    blocks: list[DumpBlock] = []
    current: DumpBlock | None = None
    for line in text.splitlines():
        header = _HEADER_RE.search(line)
        if header:
            if current is not None:
                blocks.append(current)
            current = DumpBlock(type=BlockType(header.group(1)), idx=int(header.group(2)))
            continue
        if current is None or not line.strip():
            continue
        if _HEAP_DUMP_RE.match(line):
            current.heap_dump = parse_heap_dump(line) or current.heap_dump
        else:
            current.content.append(line)
    if current is not None:
        blocks.append(current)
    return blocks


def pair_blocks(blocks: list[DumpBlock]) -> list[GCPair]:
    """Pairs each ``before`` block with an immediately following ``after`` block of
    the same GC index. Anything else is dropped."""
    pairs = []
    i = 0
    while i < len(blocks):
        cur = blocks[i]
        nxt = blocks[i + 1] if i + 1 < len(blocks) else None
        if (
            cur.type is BlockType.BEFORE
            and nxt is not None
            and nxt.type is BlockType.AFTER
            and cur.idx == nxt.idx
        ):
            pairs.append(GCPair(idx=cur.idx, before=cur, after=nxt))
            i += 2
        else:
            i += 1
    dropped = len(blocks) - 2 * len(pairs)
    if dropped:
        logger.debug(f"Dropped {dropped} unpaired GC dump blocks")
    return pairs
