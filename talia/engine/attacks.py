"""Precomputed attack tables.

Built once at import and never mutated afterwards. Squares are 0..63 with
a1=0, h8=63. Slider attacks use the classical ray approach: the ray in a
direction is cut at the first blocker, found with an lsb scan for rays
pointing to higher squares and an msb scan for the others.
"""

from __future__ import annotations

from typing import Final, Iterator, List, Sequence, Tuple


MASK64: Final = 0xFFFFFFFFFFFFFFFF

KNIGHT_OFFSETS: Final = ((-1, 2), (1, 2), (-2, 1), (2, 1), (-2, -1), (2, -1), (-1, -2), (1, -2))
KING_OFFSETS: Final = ((-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1))

# Ray directions as (file delta, rank delta)
NORTH, SOUTH, EAST, WEST = (0, 1), (0, -1), (1, 0), (-1, 0)
NORTH_EAST, NORTH_WEST, SOUTH_EAST, SOUTH_WEST = (1, 1), (-1, 1), (1, -1), (-1, -1)

ROOK_DIRS: Final = (NORTH, SOUTH, EAST, WEST)
BISHOP_DIRS: Final = (NORTH_EAST, NORTH_WEST, SOUTH_EAST, SOUTH_WEST)
QUEEN_DIRS: Final = ROOK_DIRS + BISHOP_DIRS


def lsb_index(bb: int) -> int:
    return (bb & -bb).bit_length() - 1


def iter_bits(bb: int) -> Iterator[int]:
    while bb:
        lsb = bb & -bb
        yield lsb.bit_length() - 1
        bb ^= lsb


def _offset_table(offsets: Sequence[Tuple[int, int]]) -> Tuple[int, ...]:
    table: List[int] = []
    for sq in range(64):
        f, r = sq % 8, sq // 8
        mask = 0
        for df, dr in offsets:
            tf, tr = f + df, r + dr
            if 0 <= tf < 8 and 0 <= tr < 8:
                mask |= 1 << (tr * 8 + tf)
        table.append(mask)
    return tuple(table)


def _ray_table(direction: Tuple[int, int]) -> Tuple[int, ...]:
    df, dr = direction
    table: List[int] = []
    for sq in range(64):
        tf, tr = sq % 8, sq // 8
        mask = 0
        while True:
            tf += df
            tr += dr
            if not (0 <= tf < 8 and 0 <= tr < 8):
                break
            mask |= 1 << (tr * 8 + tf)
        table.append(mask)
    return tuple(table)


KNIGHT_ATTACKS: Final = _offset_table(KNIGHT_OFFSETS)
KING_ATTACKS: Final = _offset_table(KING_OFFSETS)
# PAWN_ATTACKS[0][sq]: squares a white pawn on sq attacks; [1] for black
PAWN_ATTACKS: Final = (
    _offset_table(((-1, 1), (1, 1))),
    _offset_table(((-1, -1), (1, -1))),
)

RAYS: Final = {d: _ray_table(d) for d in QUEEN_DIRS}
# Rays pointing towards higher square indices find their first blocker via lsb
_ASCENDING: Final = frozenset((NORTH, EAST, NORTH_EAST, NORTH_WEST))


def ray_attacks(sq: int, occ: int, direction: Tuple[int, int]) -> int:
    table = RAYS[direction]
    ray = table[sq]
    blockers = ray & occ
    if blockers:
        if direction in _ASCENDING:
            first = (blockers & -blockers).bit_length() - 1
        else:
            first = blockers.bit_length() - 1
        ray ^= table[first]
    return ray


def bishop_attacks(sq: int, occ: int) -> int:
    return (
        ray_attacks(sq, occ, NORTH_EAST)
        | ray_attacks(sq, occ, NORTH_WEST)
        | ray_attacks(sq, occ, SOUTH_EAST)
        | ray_attacks(sq, occ, SOUTH_WEST)
    )


def rook_attacks(sq: int, occ: int) -> int:
    return (
        ray_attacks(sq, occ, NORTH)
        | ray_attacks(sq, occ, SOUTH)
        | ray_attacks(sq, occ, EAST)
        | ray_attacks(sq, occ, WEST)
    )


def queen_attacks(sq: int, occ: int) -> int:
    return bishop_attacks(sq, occ) | rook_attacks(sq, occ)


def flip_vertical(bb: int) -> int:
    """Mirror a bitboard across the horizontal axis (rank 1 <-> rank 8)."""
    return int.from_bytes((bb & MASK64).to_bytes(8, "little"), "big")
