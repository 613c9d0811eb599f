from __future__ import annotations

from typing import List

from talia.engine.board import Board
from talia.engine.movegen import legal_moves
from talia.search.service import SearchBudget, SearchService
from talia.search.tt import TB_WIN
from talia.tablebase import Outcome, ProbeResult, Tablebase


class ScriptedBackend:
    """Answers every probe with a fixed result and records the calls."""

    def __init__(self, result: ProbeResult, interior: bool) -> None:
        self.name = "scripted"
        self.interior = interior
        self.result = result
        self.calls: List[tuple] = []

    def probe(self, fen: str, *, root: bool = False) -> ProbeResult:
        self.calls.append((fen, root))
        return self.result


KRK = "8/8/8/4k3/8/8/8/R3K3 w - - 0 1"


def test_root_tablebase_move_short_circuits_search() -> None:
    backend = ScriptedBackend(
        ProbeResult(Outcome.WIN, dtz=15, best_move="a1a5", source="scripted"), interior=False
    )
    svc = SearchService(tablebase=Tablebase([backend]))
    res = svc.search(Board.from_fen(KRK), SearchBudget(max_depth=4))
    assert res.source == "tablebase"
    assert res.best_move is not None and res.best_move.to_uci() == "a1a5"
    assert res.score == TB_WIN
    assert res.mate_in is None
    assert res.tb_hits == 1
    assert backend.calls == [(Board.from_fen(KRK).to_fen(), True)]


def test_unknown_tablebase_move_falls_back_to_search() -> None:
    backend = ScriptedBackend(
        ProbeResult(Outcome.WIN, best_move="h7h8q", source="scripted"), interior=False
    )
    svc = SearchService(tablebase=Tablebase([backend]))
    board = Board.from_fen(KRK)
    res = svc.search(board, SearchBudget(max_depth=2))
    assert res.source == "search"
    assert res.best_move in legal_moves(board)


def test_interior_probes_cut_the_tree() -> None:
    backend = ScriptedBackend(ProbeResult(Outcome.DRAW, source="scripted"), interior=True)
    svc = SearchService(tablebase=Tablebase([backend]))
    res = svc.search(Board.from_fen(KRK), SearchBudget(max_depth=3))
    assert res.source == "search"
    assert res.score == 0
    assert res.tb_hits > 0
    assert any(not root for _, root in backend.calls)


def test_root_only_backend_not_used_inside_tree() -> None:
    backend = ScriptedBackend(ProbeResult(Outcome.DRAW, source="scripted"), interior=False)
    svc = SearchService(tablebase=Tablebase([backend]))
    res = svc.search(Board.from_fen(KRK), SearchBudget(max_depth=2))
    assert res.tb_hits == 0
    assert all(root for _, root in backend.calls)
    assert res.score > 0


def test_positions_with_castling_rights_are_not_probed() -> None:
    backend = ScriptedBackend(
        ProbeResult(Outcome.WIN, best_move="e1g1", source="scripted"), interior=True
    )
    svc = SearchService(tablebase=Tablebase([backend]))
    res = svc.search(Board.from_fen("4k3/8/8/8/8/8/8/4K2R w K - 0 1"), SearchBudget(max_depth=1))
    assert res.source == "search"
    # Every white move gives the right up, so only the children reach the backend
    assert all("K" not in fen.split()[2] for fen, _ in backend.calls)
