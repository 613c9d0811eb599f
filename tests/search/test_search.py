from __future__ import annotations

import threading
import time
from typing import List

import pytest

from talia.config import SearchConfig
from talia.engine.board import Board
from talia.engine.move import parse_uci
from talia.engine.movegen import capture_moves, legal_moves
from talia.eval import evaluate
from talia.search.service import SearchBudget, SearchResult, SearchService, mvv_lva
from talia.search.tt import MATE_SCORE


def _plain_service() -> SearchService:
    return SearchService(SearchConfig(use_tt=False, use_quiescence=False))


def _minimax(board: Board, depth: int, ply: int = 0) -> int:
    moves = legal_moves(board)
    if not moves:
        return -(MATE_SCORE - ply) if board.in_check() else 0
    if depth == 0:
        return evaluate(board)
    best = -(10 ** 9)
    for m in moves:
        record = board.apply(m)
        try:
            best = max(best, -_minimax(board, depth - 1, ply + 1))
        finally:
            board.undo(record)
    return best


@pytest.mark.parametrize(
    "fen, depth",
    [
        ("rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1", 2),
        ("r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1", 2),
        ("8/2p5/3p4/KP5r/1R3p1k/8/4P1P1/8 w - - 0 1", 3),
        ("r1bqkbnr/pppp1ppp/2n5/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R w KQkq - 2 3", 2),
    ],
)
def test_alpha_beta_matches_minimax(fen: str, depth: int) -> None:
    board = Board.from_fen(fen)
    expected = _minimax(board.copy(), depth)
    res = _plain_service().search(board, SearchBudget(max_depth=depth))
    assert res.depth == depth
    assert res.score == expected
    assert res.best_move in legal_moves(board)


def test_full_search_smoke() -> None:
    board = Board.startpos()
    res = SearchService().search(board, SearchBudget(max_depth=3))
    assert res.source == "search"
    assert res.best_move in legal_moves(board)
    assert res.pv and res.pv[0] == res.best_move
    assert [it["depth"] for it in res.iters] == [1, 2, 3]
    assert res.nodes >= res.qnodes > 0
    assert res.seldepth >= 3


def test_board_restored_after_search() -> None:
    fen = "r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1"
    board = Board.from_fen(fen)
    h = board.zobrist_hash
    SearchService().search(board, SearchBudget(max_depth=2))
    assert board.to_fen() == fen
    assert board.zobrist_hash == h


def test_finds_back_rank_mate() -> None:
    board = Board.from_fen("6k1/5ppp/8/8/8/8/5PPP/3R2K1 w - - 0 1")
    res = SearchService().search(board, SearchBudget(max_depth=3))
    assert res.best_move == parse_uci("d1d8")
    assert res.mate_in == 1
    assert res.score_cp is None


def test_wins_hanging_queen() -> None:
    board = Board.from_fen("4k3/8/8/3q4/8/8/8/3RK3 w - - 0 1")
    res = SearchService().search(board, SearchBudget(max_depth=2))
    assert res.best_move == parse_uci("d1d5")
    assert res.score > 0


def test_checkmated_root() -> None:
    board = Board.from_fen("7k/6Q1/6K1/8/8/8/8/8 b - - 0 1")
    res = SearchService().search(board, SearchBudget(max_depth=2))
    assert res.source == "terminal"
    assert res.best_move is None
    assert res.mate_in == 0
    assert res.score_cp is None


def test_stalemated_root() -> None:
    board = Board.from_fen("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")
    res = SearchService().search(board, SearchBudget(max_depth=2))
    assert res.source == "terminal"
    assert res.best_move is None
    assert res.score == 0
    assert res.mate_in is None


def test_quiescence_sees_the_recapture() -> None:
    # d5 is defended by c6: taking it wins a pawn only at the horizon
    fen = "4k3/8/2p5/3p4/8/8/8/3QK3 w - - 0 1"
    greedy = _plain_service().search(Board.from_fen(fen), SearchBudget(max_depth=1))
    assert greedy.best_move == parse_uci("d1d5")
    res = SearchService().search(Board.from_fen(fen), SearchBudget(max_depth=1))
    assert res.best_move != parse_uci("d1d5")


def test_captures_ordered_most_valuable_victim_first() -> None:
    board = Board.from_fen("4k3/8/8/3q4/4P3/8/1p6/Q3K3 w - - 0 1")
    pawn_takes_queen = parse_uci("e4d5")
    queen_takes_pawn = parse_uci("a1b2")
    captures = capture_moves(board)
    assert pawn_takes_queen in captures and queen_takes_pawn in captures
    ordered = sorted(captures, key=lambda m: mvv_lva(board, m), reverse=True)
    assert ordered[0] == pawn_takes_queen
    assert ordered[-1] == queen_takes_pawn


def test_zero_time_budget_still_returns_a_legal_move() -> None:
    board = Board.startpos()
    res = SearchService().search(board, SearchBudget(max_time_ms=0))
    assert res.source == "fallback"
    assert res.depth == 0
    assert res.best_move in legal_moves(board)


def test_time_budget_overrun_is_small() -> None:
    board = Board.from_fen("r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1")
    started = time.perf_counter()
    res = SearchService().search(board, SearchBudget(max_time_ms=50))
    wall_ms = (time.perf_counter() - started) * 1000
    assert res.best_move in legal_moves(board)
    assert wall_ms < 50 + 150


def test_node_budget_is_respected() -> None:
    board = Board.startpos()
    res = SearchService().search(board, SearchBudget(max_nodes=200))
    assert res.nodes <= 200
    assert res.depth >= 1
    assert res.best_move in legal_moves(board)


def test_preset_stop_event_returns_fallback() -> None:
    stop = threading.Event()
    stop.set()
    board = Board.startpos()
    res = SearchService().search(board, SearchBudget(max_depth=5), stop_event=stop)
    assert res.source == "fallback"
    assert res.best_move in legal_moves(board)


def test_stop_between_iterations_keeps_deepest_result() -> None:
    stop = threading.Event()
    seen: List[SearchResult] = []

    def on_iter(res: SearchResult) -> None:
        seen.append(res)
        if res.depth == 2:
            stop.set()

    res = SearchService().search(
        Board.startpos(), SearchBudget(max_depth=6), on_iter=on_iter, stop_event=stop
    )
    assert [r.depth for r in seen] == [1, 2]
    assert res.depth == 2
    assert res.best_move == seen[-1].best_move


def test_repetition_in_history_counts_as_draw() -> None:
    # Black is a queen down; stepping into a position seen twice before is a draw
    board = Board.from_fen("4k3/8/8/8/8/8/8/3QK3 b - - 0 1")
    child = board.copy()
    child.play(parse_uci("e8e7"))
    history = [child.zobrist_hash, child.zobrist_hash]
    res = SearchService().search(board, SearchBudget(max_depth=1), history=history)
    assert res.best_move == parse_uci("e8e7")
    assert res.score == 0


def test_fifty_move_rule_inside_tree() -> None:
    # Any reply reaches halfmove 100, so every line is a draw
    board = Board.from_fen("4k3/8/8/8/8/8/8/3QK3 w - - 99 80")
    res = SearchService().search(board, SearchBudget(max_depth=2))
    assert res.score == 0


def test_default_depth_from_config() -> None:
    svc = SearchService(SearchConfig(depth=2))
    res = svc.search(Board.startpos())
    assert res.depth == 2


def test_budget_depth_capped_by_max_depth() -> None:
    svc = SearchService(SearchConfig(max_depth=2))
    res = svc.search(Board.startpos(), SearchBudget(max_depth=10))
    assert res.depth == 2
