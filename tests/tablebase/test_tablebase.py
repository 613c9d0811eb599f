from __future__ import annotations

from typing import List

from talia.config import TablebaseConfig
from talia.engine.board import Board
from talia.tablebase import (
    NOT_APPLICABLE,
    LichessBackend,
    Outcome,
    ProbeResult,
    Tablebase,
)


class CountingBackend:
    def __init__(self, interior: bool = True, outcome: Outcome = Outcome.WIN) -> None:
        self.name = "counting"
        self.interior = interior
        self.outcome = outcome
        self.calls: List[str] = []

    def probe(self, fen: str, *, root: bool = False) -> ProbeResult:
        self.calls.append(fen)
        return ProbeResult(self.outcome, source=self.name)


KRK = "8/8/8/4k3/8/8/8/R3K3 w - - 0 1"


def test_krk_is_probed() -> None:
    backend = CountingBackend()
    tb = Tablebase([backend])
    res = tb.probe(Board.from_fen(KRK))
    assert res.outcome is Outcome.WIN
    assert res.applicable
    assert backend.calls == [KRK]


def test_too_many_pieces_not_applicable() -> None:
    backend = CountingBackend()
    tb = Tablebase([backend])
    eight = Board.from_fen("4k3/pppp4/8/8/8/8/PP6/4K3 w - - 0 1")
    assert eight.piece_count() == 8
    assert tb.probe(eight) is NOT_APPLICABLE
    assert backend.calls == []


def test_castling_rights_not_applicable() -> None:
    backend = CountingBackend()
    tb = Tablebase([backend])
    assert tb.probe(Board.from_fen("4k3/8/8/8/8/8/8/4K2R w K - 0 1")) is NOT_APPLICABLE
    assert backend.calls == []


def test_fifty_move_clock_not_applicable() -> None:
    tb = Tablebase([CountingBackend()])
    assert tb.probe(Board.from_fen("8/8/8/4k3/8/8/8/R3K3 w - - 100 90")) is NOT_APPLICABLE


def test_no_backends_disabled() -> None:
    tb = Tablebase()
    assert not tb.enabled
    assert tb.probe(Board.from_fen(KRK)) is NOT_APPLICABLE


def test_results_are_cached_per_position() -> None:
    backend = CountingBackend()
    tb = Tablebase([backend])
    tb.probe(Board.from_fen(KRK))
    # Same position with different counters hits the cache
    tb.probe(Board.from_fen("8/8/8/4k3/8/8/8/R3K3 w - - 7 40"))
    assert len(backend.calls) == 1
    tb.clear_cache()
    tb.probe(Board.from_fen(KRK))
    assert len(backend.calls) == 2


def test_cache_is_bounded() -> None:
    backend = CountingBackend()
    tb = Tablebase([backend], cache_size=1)
    tb.probe(Board.from_fen(KRK))
    tb.probe(Board.from_fen("8/8/8/4k3/8/8/8/R3K3 b - - 0 1"))
    tb.probe(Board.from_fen(KRK))
    assert len(backend.calls) == 3


def test_root_only_backends_skipped_inside_tree() -> None:
    root_only = CountingBackend(interior=False)
    tb = Tablebase([root_only])
    assert not tb.has_interior_backend
    assert tb.probe(Board.from_fen(KRK)) is NOT_APPLICABLE
    assert tb.probe(Board.from_fen(KRK), root=True).outcome is Outcome.WIN
    assert len(root_only.calls) == 1


def test_first_applicable_backend_answers() -> None:
    first = CountingBackend(outcome=Outcome.NOT_APPLICABLE)
    second = CountingBackend(outcome=Outcome.LOSS)
    tb = Tablebase([first, second])
    assert tb.probe(Board.from_fen(KRK)).outcome is Outcome.LOSS
    assert len(first.calls) == len(second.calls) == 1


def test_from_config_online_only() -> None:
    cfg = TablebaseConfig(online=True, max_pieces=5)
    tb = Tablebase.from_config(cfg)
    assert tb.enabled
    assert isinstance(tb.backends[0], LichessBackend)
    assert tb.max_pieces == 5


def test_from_config_unreadable_syzygy_dir(tmp_path) -> None:
    cfg = TablebaseConfig(syzygy_path=str(tmp_path / "missing"))
    tb = Tablebase.from_config(cfg)
    assert not tb.enabled
