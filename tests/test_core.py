from __future__ import annotations

import pytest

from talia import core
from talia.config import SearchConfig
from talia.engine.board import STARTPOS_FEN
from talia.engine.errors import ParseError
from talia.engine.movegen import legal_moves
from talia.search.service import SearchBudget, SearchService


def test_new_game_exports_start_fen() -> None:
    assert core.export_fen(core.new_game()) == STARTPOS_FEN


def test_load_position_round_trips() -> None:
    fen = "r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1"
    assert core.export_fen(core.load_position(fen)) == fen


def test_load_position_rejects_bad_input() -> None:
    with pytest.raises(ParseError):
        core.load_position("rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP w KQkq - 0 1")
    with pytest.raises(ParseError):
        core.load_position("4k3/8/8/8/8/8/8/8 w - - 0 1")


def test_search_through_entry_point() -> None:
    board = core.new_game()
    svc = SearchService(SearchConfig(tt_entries=1 << 12))
    res = core.search(board, SearchBudget(max_depth=2), service=svc)
    assert res.best_move in legal_moves(board)
    assert core.export_fen(board) == STARTPOS_FEN
