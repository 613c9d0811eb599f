from __future__ import annotations

from typing import Dict

from .board import Board
from .movegen import legal_moves


def perft(board: Board, depth: int) -> int:
    """Compute perft node count for `board` at `depth`.

    Definition:
    - depth == 0 returns 1 (the current node).
    - depth > 0 returns the sum over all legal child positions' perft(depth-1).

    Uses make/unmake on ``board`` itself; the board is restored on return.
    Depth 1 is counted in bulk from the legal move list.
    """
    if depth < 0:
        raise ValueError("depth must be >= 0")
    if depth == 0:
        return 1

    moves = legal_moves(board)
    if depth == 1:
        return len(moves)

    nodes = 0
    for m in moves:
        record = board.apply(m)
        try:
            nodes += perft(board, depth - 1)
        finally:
            board.undo(record)
    return nodes


def divide(board: Board, depth: int) -> Dict[str, int]:
    """Per-root-move perft counts, keyed by UCI move text.

    Raises:
        ValueError: If ``depth`` is less than 1.
    """
    if depth < 1:
        raise ValueError("depth must be >= 1")
    out: Dict[str, int] = {}
    for m in legal_moves(board):
        record = board.apply(m)
        try:
            out[m.to_uci()] = perft(board, depth - 1)
        finally:
            board.undo(record)
    return out
