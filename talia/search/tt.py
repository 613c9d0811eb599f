from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from talia.engine.move import Move


# Score scale shared with the search. Mate and tablebase scores are stored
# relative to the node that produced them and rebased on probe.
MATE_SCORE = 1_000_000
TB_WIN = 900_000
MAX_PLY = 256
MATE_BOUND = MATE_SCORE - MAX_PLY
TB_BOUND = TB_WIN - MAX_PLY


class Bound(Enum):
    EXACT = 0  # exact evaluation
    LOWER = 1  # fail-high, score is a lower bound
    UPPER = 2  # fail-low, score is an upper bound


@dataclass
class TTEntry:
    key: int  # zobrist hash
    depth: int  # remaining search depth
    score: int  # node-relative score
    bound: Bound
    best: Optional[Move]
    gen: int


def score_to_tt(score: int, ply: int) -> int:
    if score >= TB_BOUND:
        return score + ply
    if score <= -TB_BOUND:
        return score - ply
    return score


def score_from_tt(score: int, ply: int) -> int:
    if score >= TB_BOUND:
        return score - ply
    if score <= -TB_BOUND:
        return score + ply
    return score


class TranspositionTable:
    """Fixed-size hash table indexed by the low bits of the Zobrist key.

    Replacement is depth-preferred within a search; entries from earlier
    searches are always overwritten.
    """

    def __init__(self, entries: int = 1 << 18) -> None:
        size = 1
        while size < max(1, entries):
            size <<= 1
        self.size = size
        self.mask = size - 1
        self.table: List[Optional[TTEntry]] = [None] * size
        self.generation = 0
        self.stores = 0
        self.replacements = 0

    def clear(self) -> None:
        self.table = [None] * self.size
        self.generation = 0

    def new_search(self) -> None:
        self.generation += 1

    def probe(self, key: int) -> Optional[TTEntry]:
        entry = self.table[key & self.mask]
        if entry is None or entry.key != key:
            return None
        return entry

    def store(self, key: int, depth: int, score: int, bound: Bound, best: Optional[Move]) -> None:
        idx = key & self.mask
        existing = self.table[idx]
        if existing is not None:
            if existing.gen == self.generation and existing.depth > depth:
                return
            self.replacements += 1
        else:
            self.stores += 1
        self.table[idx] = TTEntry(key, depth, score, bound, best, self.generation)

    def hashfull(self) -> int:
        """Permille of sampled slots holding an entry from the current search."""
        sample = self.table[: min(1000, self.size)]
        used = sum(1 for e in sample if e is not None and e.gen == self.generation)
        return used * 1000 // len(sample)
