import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

FIXED_BLOCK_PREFIX = "FixedBlockPage_"
COMPACTED_KEY = "Compacted"

_FIXED_BLOCK_RE = re.compile(r"^(\d+):\s*(.*)$")
_NAMED_RE = re.compile(r"^([a-zA-Z_]+):\s*(.*)$")
_TOKEN_RE = re.compile(r"\((\d+(?:\.\d+)?)%\)|\+|-")


class PageKind(Enum):
    FIXED_BLOCK = "FixedBlockPage"
    NEXT_FIT = "NextFitPage"
    SINGLE_OBJECT = "SingleObjectPage"
    EXTRA_OBJECT = "ExtraObjectPage"
    COMPACTED = "CompactedPage"
    OTHER = "Other"


_NAMED_KINDS = {
    "nextFitPages": PageKind.NEXT_FIT,
    "singleObjectPages": PageKind.SINGLE_OBJECT,
    "extraObjectPages": PageKind.EXTRA_OBJECT,
}


@dataclass(frozen=True)
class PageUsage:
    kind: PageKind
    name: str
    value: float


PageDistribution = dict[str, list[PageUsage]]


@dataclass
class GroupDelta:
    key: str
    kind: PageKind
    name: str
    count_before: int
    count_after: int
    mean_before: float
    mean_after: float

    @property
    def diff(self) -> int:
        return self.count_after - self.count_before

    @property
    def label(self) -> str:
        if self.kind is PageKind.FIXED_BLOCK:
            return f"{self.kind.value}[{self.name}]"
        return f"{self.kind.value} {self.name}"


def parse_page_usages(sequence: str, kind: PageKind, name: str) -> list[PageUsage]:
    """Tokenizes ``(<p>%)``, ``+`` (full) and ``-`` (empty) left to right.

    Position within the returned list is meaningful: index 0 is the group's head page.
    """
    usages = []
    for m in _TOKEN_RE.finditer(sequence):
        if m.group(1) is not None:
            value = float(m.group(1))
            if value > 100:
                logger.debug(f"Skipping out of range page occupancy {value}% in {name}")
                continue
        elif m.group(0) == "+":
            value = 100.0
        else:
            value = 0.0
        usages.append(PageUsage(kind=kind, name=name, value=value))
    return usages


def parse_distribution(content_lines: Iterable[str]) -> PageDistribution:
    dist: PageDistribution = {}
    for raw in content_lines:
        line = raw.strip()
        fixed = _FIXED_BLOCK_RE.match(line)
        named = None if fixed else _NAMED_RE.match(line)
        if fixed:
            size = fixed.group(1)
            dist[f"{FIXED_BLOCK_PREFIX}{size}"] = parse_page_usages(
                fixed.group(2), PageKind.FIXED_BLOCK, size
            )
        elif named:
            name = named.group(1)
            kind = _NAMED_KINDS.get(name, PageKind.OTHER)
            dist[name] = parse_page_usages(named.group(2), kind, name)
        else:
            logger.debug(f"Skipping unrecognized dump line: {line!r}")
    return dist


def kind_order(key: str) -> tuple[int, int]:
    """Sort key for distribution group keys.

    Fixed-block groups order by size, then nextFitPages, singleObjectPages,
    extraObjectPages, and anything unrecognized last.
    """
    if key.startswith(FIXED_BLOCK_PREFIX):
        size = key[len(FIXED_BLOCK_PREFIX) :]
        if size.isdigit():
            return (0, int(size))
    match key:
        case "nextFitPages":
            return (1, 0)
        case "singleObjectPages":
            return (2, 0)
        case "extraObjectPages":
            return (3, 0)
        case _:
            return (4, 0)


def ordered_keys(*distributions: PageDistribution) -> list[str]:
    seen: dict[str, None] = {}
    for dist in distributions:
        seen.update(dict.fromkeys(dist))
    return sorted(seen, key=kind_order)


def _mean(usages: list[PageUsage]) -> float:
    return sum(u.value for u in usages) / len(usages) if usages else 0.0


def _group_identity(key: str) -> tuple[PageKind, str]:
    if key.startswith(FIXED_BLOCK_PREFIX):
        return PageKind.FIXED_BLOCK, key[len(FIXED_BLOCK_PREFIX) :]
    if key == COMPACTED_KEY:
        return PageKind.COMPACTED, key
    return _NAMED_KINDS.get(key, PageKind.OTHER), key


def compare_groups(before: PageDistribution, after: PageDistribution) -> list[GroupDelta]:
    """Per-group page counts and mean occupancy before and after a GC."""
    deltas = []
    for key in ordered_keys(before, after):
        b = before.get(key, [])
        a = after.get(key, [])
        kind, name = _group_identity(key)
        deltas.append(
            GroupDelta(
                key=key,
                kind=kind,
                name=name,
                count_before=len(b),
                count_after=len(a),
                mean_before=_mean(b),
                mean_after=_mean(a),
            )
        )
    return deltas
