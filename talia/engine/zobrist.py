from __future__ import annotations

from itertools import combinations
from typing import Dict, List, TYPE_CHECKING

from .attacks import MASK64, iter_bits

if TYPE_CHECKING:  # pragma: no cover
    from .board import Board


CASTLING_ORDER = "KQkq"


class _SplitMix64:
    def __init__(self, seed: int) -> None:
        self.state = seed & MASK64

    def next(self) -> int:
        # Deterministic 64-bit SplitMix64
        self.state = (self.state + 0x9E3779B97F4A7C15) & MASK64
        z = self.state
        z = (z ^ (z >> 30)) * 0xBF58476D1CE4E5B9 & MASK64
        z = (z ^ (z >> 27)) * 0x94D049BB133111EB & MASK64
        z = z ^ (z >> 31)
        return z & MASK64


class Zobrist:
    """Zobrist hashing seeds.

    Table layout:
    - piece_square[12][64]: indices follow Board piece order (WP..BK)
    - side_to_move: toggled when black is to move
    - castling[4]: K, Q, k, q
    - castling_keys: XOR of ``castling`` for every normalized rights string
    - ep_file[8]: files a..h
    """

    piece_square: List[List[int]]
    side_to_move: int
    castling: List[int]
    castling_keys: Dict[str, int]
    ep_file: List[int]

    def __init__(self, seed: int = 0xC0FFEE_F00D_DEAD) -> None:
        prng = _SplitMix64(seed)
        self.piece_square = [[prng.next() for _ in range(64)] for _ in range(12)]
        self.side_to_move = prng.next()
        self.castling = [prng.next() for _ in range(4)]
        self.ep_file = [prng.next() for _ in range(8)]
        self.castling_keys = {}
        for n in range(5):
            for idxs in combinations(range(4), n):
                key = 0
                for i in idxs:
                    key ^= self.castling[i]
                self.castling_keys["".join(CASTLING_ORDER[i] for i in idxs)] = key


# Global deterministic table
ZOBRIST = Zobrist()


def compute_hash_from_scratch(board: "Board") -> int:
    """Compute the 64-bit Zobrist hash of ``board``.

    The board keeps its own hash up to date incrementally; this is the
    reference it must agree with.
    """
    h = 0
    for p in range(12):
        for sq in iter_bits(board.bb[p]):
            h ^= ZOBRIST.piece_square[p][sq]
    if board.side_to_move == "b":
        h ^= ZOBRIST.side_to_move
    h ^= ZOBRIST.castling_keys[board.castling]
    if board.ep_square is not None:
        h ^= ZOBRIST.ep_file[board.ep_square % 8]
    return h & MASK64
