"""Static evaluation: material plus piece-square tables.

Pure, deterministic, and side-effect free.
"""

from __future__ import annotations

from typing import Final

from talia.engine.attacks import iter_bits
from talia.engine.board import (
    Board,
    WP,
    WN,
    WB,
    WR,
    WQ,
    WK,
    BP,
    BN,
    BB,
    BR,
    BQ,
    BK,
)


# Material values in centipawns
P_VAL: Final = 100
N_VAL: Final = 320
B_VAL: Final = 330
R_VAL: Final = 500
Q_VAL: Final = 900

# Indexed by piece % 6; the king carries no material
PIECE_VALUES: Final = (P_VAL, N_VAL, B_VAL, R_VAL, Q_VAL, 0)

# Piece-square tables (white perspective), centipawns, a1 first, one rank per row.
# Values follow the simplified evaluation function.
# fmt: off
PSQT_P: Final = (
      0,   0,   0,   0,   0,   0,   0,   0,
      5,  10,  10, -20, -20,  10,  10,   5,
      5,  -5, -10,   0,   0, -10,  -5,   5,
      0,   0,   0,  20,  20,   0,   0,   0,
      5,   5,  10,  25,  25,  10,   5,   5,
     10,  10,  20,  30,  30,  20,  10,  10,
     50,  50,  50,  50,  50,  50,  50,  50,
      0,   0,   0,   0,   0,   0,   0,   0,
)

PSQT_N: Final = (
    -50, -40, -30, -30, -30, -30, -40, -50,
    -40, -20,   0,   5,   5,   0, -20, -40,
    -30,   5,  10,  15,  15,  10,   5, -30,
    -30,   0,  15,  20,  20,  15,   0, -30,
    -30,   5,  15,  20,  20,  15,   5, -30,
    -30,   0,  10,  15,  15,  10,   0, -30,
    -40, -20,   0,   0,   0,   0, -20, -40,
    -50, -40, -30, -30, -30, -30, -40, -50,
)

PSQT_B: Final = (
    -20, -10, -10, -10, -10, -10, -10, -20,
    -10,   5,   0,   0,   0,   0,   5, -10,
    -10,  10,  10,  10,  10,  10,  10, -10,
    -10,   0,  10,  10,  10,  10,   0, -10,
    -10,   5,   5,  10,  10,   5,   5, -10,
    -10,   0,   5,  10,  10,   5,   0, -10,
    -10,   0,   0,   0,   0,   0,   0, -10,
    -20, -10, -10, -10, -10, -10, -10, -20,
)

PSQT_R: Final = (
      0,   0,   0,   5,   5,   0,   0,   0,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
      5,  10,  10,  10,  10,  10,  10,   5,
      0,   0,   0,   0,   0,   0,   0,   0,
)

PSQT_Q: Final = (
    -20, -10, -10,  -5,  -5, -10, -10, -20,
    -10,   0,   5,   0,   0,   0,   0, -10,
    -10,   5,   5,   5,   5,   5,   0, -10,
      0,   0,   5,   5,   5,   5,   0,  -5,
     -5,   0,   5,   5,   5,   5,   0,  -5,
    -10,   0,   5,   5,   5,   5,   0, -10,
    -10,   0,   0,   0,   0,   0,   0, -10,
    -20, -10, -10,  -5,  -5, -10, -10, -20,
)

PSQT_K: Final = (
     20,  30,  10,   0,   0,  10,  30,  20,
     20,  20,   0,   0,   0,   0,  20,  20,
    -10, -20, -20, -20, -20, -20, -20, -10,
    -20, -30, -30, -40, -40, -30, -30, -20,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
)

PSQT_K_EG: Final = (
    -50, -30, -30, -30, -30, -30, -30, -50,
    -30, -30,   0,   0,   0,   0, -30, -30,
    -30, -10,  20,  30,  30,  20, -10, -30,
    -30, -10,  30,  40,  40,  30, -10, -30,
    -30, -10,  30,  40,  40,  30, -10, -30,
    -30, -10,  20,  30,  30,  20, -10, -30,
    -30, -20, -10,   0,   0, -10, -20, -30,
    -50, -40, -30, -20, -20, -30, -40, -50,
)
# fmt: on

PHASE_TOTAL: Final = 24

_PIECE_TABLES: Final = (
    (WP, BP, P_VAL, PSQT_P),
    (WN, BN, N_VAL, PSQT_N),
    (WB, BB, B_VAL, PSQT_B),
    (WR, BR, R_VAL, PSQT_R),
    (WQ, BQ, Q_VAL, PSQT_Q),
)


def _mirror_sq(sq: int) -> int:
    # Flip vertically (rank mirror)
    return sq ^ 56


def game_phase(board: Board) -> int:
    """Middlegame weight on a 0..128 scale (128 = all minor/major pieces on board)."""
    knights = (board.bb[WN] | board.bb[BN]).bit_count()
    bishops = (board.bb[WB] | board.bb[BB]).bit_count()
    rooks = (board.bb[WR] | board.bb[BR]).bit_count()
    queens = (board.bb[WQ] | board.bb[BQ]).bit_count()
    phase_units = knights + bishops + 2 * rooks + 4 * queens
    return max(0, min(128, (phase_units * 128) // PHASE_TOTAL))


def _king_term(sq: int, mg_scaled: int) -> int:
    eg_scaled = 128 - mg_scaled
    return (mg_scaled * PSQT_K[sq] + eg_scaled * PSQT_K_EG[sq]) // 128


def evaluate_white(board: Board) -> int:
    """Return a material + PSQT evaluation in centipawns.

    Positive means advantage for White.
    """
    score = 0
    for white_piece, black_piece, value, table in _PIECE_TABLES:
        for sq in iter_bits(board.bb[white_piece]):
            score += value + table[sq]
        for sq in iter_bits(board.bb[black_piece]):
            score -= value + table[_mirror_sq(sq)]

    # King tables: blend MG/EG by remaining material
    mg_scaled = game_phase(board)
    for sq in iter_bits(board.bb[WK]):
        score += _king_term(sq, mg_scaled)
    for sq in iter_bits(board.bb[BK]):
        score -= _king_term(_mirror_sq(sq), mg_scaled)
    return score


def evaluate(board: Board) -> int:
    """Return the static evaluation from the side to move's perspective.

    Args:
        board (Board): Position to score.

    Returns:
        int: Centipawns; positive favours the side to move.
    """
    score = evaluate_white(board)
    return score if board.side_to_move == "w" else -score
