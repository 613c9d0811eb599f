"""Engine entry points for embedding callers.

Thin functions over :class:`Board` and :class:`SearchService`; front-ends
(UCI, HTTP, CLI) go through the same objects.
"""

from __future__ import annotations

import threading
from typing import Optional, Sequence

from talia.config import Config, load_config
from talia.engine.board import Board
from talia.search.service import OnIter, SearchBudget, SearchResult, SearchService
from talia.tablebase import Tablebase


_default_service: Optional[SearchService] = None
_default_lock = threading.Lock()


def build_service(cfg: Config) -> SearchService:
    return SearchService(cfg.search, Tablebase.from_config(cfg.tablebase))


def default_service() -> SearchService:
    """Process-wide service built from the loaded configuration on first use."""
    global _default_service
    with _default_lock:
        if _default_service is None:
            _default_service = build_service(load_config())
        return _default_service


def new_game() -> Board:
    """Return a board set to the standard starting position."""
    return Board.startpos()


def load_position(fen: str) -> Board:
    """Parse ``fen`` into a searchable board.

    Raises:
        ParseError: If the FEN is malformed or the position breaks the board
            invariants (kings, back-rank pawns, side not to move in check).
    """
    board = Board.from_fen(fen)
    board.validate()
    return board


def search(
    board: Board,
    budget: Optional[SearchBudget] = None,
    *,
    history: Optional[Sequence[int]] = None,
    on_iter: Optional[OnIter] = None,
    stop_event: Optional[threading.Event] = None,
    service: Optional[SearchService] = None,
) -> SearchResult:
    """Search ``board`` within ``budget``; the board is unchanged afterwards."""
    svc = service if service is not None else default_service()
    return svc.search(board, budget, history=history, on_iter=on_iter, stop_event=stop_event)


def export_fen(board: Board) -> str:
    return board.to_fen()
