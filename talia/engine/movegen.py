"""Move generation.

Pseudo-legal moves come from a per-piece dispatch table; legality is decided
by applying each candidate, testing the mover's king, and undoing it.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Tuple

from .attacks import (
    KING_ATTACKS,
    KNIGHT_ATTACKS,
    PAWN_ATTACKS,
    bishop_attacks,
    iter_bits,
    queen_attacks,
    rook_attacks,
)
from .board import Board, PieceKind, piece_index
from .move import PROMOTION_PIECES, Move, MoveFlag


Generator = Callable[[Board, int, bool, int, int, int, bool, List[Move]], None]

# right -> (king from, king to, squares that must be empty, squares the king crosses, rook from)
CASTLING_SPECS: Dict[str, Tuple[int, int, int, Tuple[int, ...], int]] = {
    "K": (4, 6, (1 << 5) | (1 << 6), (5, 6), 7),
    "Q": (4, 2, (1 << 1) | (1 << 2) | (1 << 3), (3, 2), 0),
    "k": (60, 62, (1 << 61) | (1 << 62), (61, 62), 63),
    "q": (60, 58, (1 << 57) | (1 << 58) | (1 << 59), (59, 58), 56),
}


def _add_targets(sq: int, targets: int, enemy: int, moves: List[Move]) -> None:
    for to in iter_bits(targets):
        flags = MoveFlag.CAPTURE if (enemy >> to) & 1 else MoveFlag.NONE
        moves.append(Move(sq, to, None, flags))


def _add_promotions(sq: int, to: int, flags: MoveFlag, moves: List[Move]) -> None:
    for promo in PROMOTION_PIECES:
        moves.append(Move(sq, to, promo, flags | MoveFlag.PROMOTION))


def _gen_pawn(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    push = 8 if white else -8
    start_rank = 1 if white else 6
    promo_rank = 7 if white else 0

    one = sq + push
    if 0 <= one < 64 and not (occ >> one) & 1:
        if one // 8 == promo_rank:
            # Promotions count as tactical and are kept in capture-only mode
            _add_promotions(sq, one, MoveFlag.NONE, moves)
        elif quiet:
            moves.append(Move(sq, one))
            two = one + push
            if sq // 8 == start_rank and not (occ >> two) & 1:
                moves.append(Move(sq, two, None, MoveFlag.DOUBLE_PUSH))

    attacks = PAWN_ATTACKS[0 if white else 1][sq]
    for to in iter_bits(attacks & enemy):
        if to // 8 == promo_rank:
            _add_promotions(sq, to, MoveFlag.CAPTURE, moves)
        else:
            moves.append(Move(sq, to, None, MoveFlag.CAPTURE))

    ep = board.ep_square
    if ep is not None and (attacks >> ep) & 1 and not (occ >> ep) & 1:
        victim_sq = ep - 8 if white else ep + 8
        if (board.bb[piece_index(not white, PieceKind.PAWN)] >> victim_sq) & 1:
            moves.append(Move(sq, ep, None, MoveFlag.CAPTURE | MoveFlag.EN_PASSANT))


def _gen_knight(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    targets = KNIGHT_ATTACKS[sq] & ~own
    _add_targets(sq, targets if quiet else targets & enemy, enemy, moves)


def _gen_bishop(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    targets = bishop_attacks(sq, occ) & ~own
    _add_targets(sq, targets if quiet else targets & enemy, enemy, moves)


def _gen_rook(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    targets = rook_attacks(sq, occ) & ~own
    _add_targets(sq, targets if quiet else targets & enemy, enemy, moves)


def _gen_queen(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    targets = queen_attacks(sq, occ) & ~own
    _add_targets(sq, targets if quiet else targets & enemy, enemy, moves)


def _gen_king(
    board: Board, sq: int, white: bool, own: int, enemy: int, occ: int, quiet: bool, moves: List[Move]
) -> None:
    targets = KING_ATTACKS[sq] & ~own
    _add_targets(sq, targets if quiet else targets & enemy, enemy, moves)
    if quiet and board.castling:
        _gen_castling(board, white, occ, moves)


def _gen_castling(board: Board, white: bool, occ: int, moves: List[Move]) -> None:
    rights = "KQ" if white else "kq"
    king_bb = board.bb[piece_index(white, PieceKind.KING)]
    rook_bb = board.bb[piece_index(white, PieceKind.ROOK)]
    in_check = None
    for right in rights:
        if right not in board.castling:
            continue
        king_from, king_to, empty, crossed, rook_from = CASTLING_SPECS[right]
        if not (king_bb >> king_from) & 1 or not (rook_bb >> rook_from) & 1:
            continue
        if occ & empty:
            continue
        if in_check is None:
            in_check = board.is_square_attacked(king_from, by_white=not white)
        if in_check:
            return
        if any(board.is_square_attacked(s, by_white=not white) for s in crossed):
            continue
        moves.append(Move(king_from, king_to, None, MoveFlag.CASTLE))


GENERATORS: Dict[PieceKind, Generator] = {
    PieceKind.PAWN: _gen_pawn,
    PieceKind.KNIGHT: _gen_knight,
    PieceKind.BISHOP: _gen_bishop,
    PieceKind.ROOK: _gen_rook,
    PieceKind.QUEEN: _gen_queen,
    PieceKind.KING: _gen_king,
}


def pseudo_legal_moves(board: Board, quiet: bool = True) -> List[Move]:
    """Generate moves that obey piece movement but may leave the king in check.

    Args:
        board (Board): Position to generate for.
        quiet (bool): When False only captures, en passant and promotions are
            produced.

    Returns:
        List[Move]: Moves with their descriptive flags set.
    """
    white = board.side_to_move == "w"
    own = board.color_occupancy(white)
    enemy = board.color_occupancy(not white)
    occ = own | enemy
    base = 0 if white else 6
    moves: List[Move] = []
    for kind, gen in GENERATORS.items():
        for sq in iter_bits(board.bb[base + kind]):
            gen(board, sq, white, own, enemy, occ, quiet, moves)
    return moves


def _leaves_king_safe(board: Board, move: Move, white: bool) -> bool:
    record = board.apply(move)
    try:
        ksq = board.king_square(white)
        return ksq is None or not board.is_square_attacked(ksq, by_white=not white)
    finally:
        board.undo(record)


def legal_moves(board: Board) -> List[Move]:
    """Return all legal moves for the side to move.

    The board is restored to its exact prior state, hash included.
    """
    white = board.side_to_move == "w"
    return [m for m in pseudo_legal_moves(board) if _leaves_king_safe(board, m, white)]


def capture_moves(board: Board) -> List[Move]:
    """Return legal captures and promotions only, for quiescence search."""
    white = board.side_to_move == "w"
    return [m for m in pseudo_legal_moves(board, quiet=False) if _leaves_king_safe(board, m, white)]


def has_legal_moves(board: Board) -> bool:
    white = board.side_to_move == "w"
    return any(_leaves_king_safe(board, m, white) for m in pseudo_legal_moves(board))
