from __future__ import annotations

from talia.engine.move import parse_uci
from talia.search.tt import (
    MATE_SCORE,
    TB_WIN,
    Bound,
    TranspositionTable,
    score_from_tt,
    score_to_tt,
)


def test_size_rounds_up_to_power_of_two() -> None:
    tt = TranspositionTable(1000)
    assert tt.size == 1024
    assert tt.mask == 1023


def test_store_and_probe() -> None:
    tt = TranspositionTable(16)
    best = parse_uci("e2e4")
    tt.store(0xABCDEF, 3, 25, Bound.EXACT, best)
    entry = tt.probe(0xABCDEF)
    assert entry is not None
    assert (entry.depth, entry.score, entry.bound, entry.best) == (3, 25, Bound.EXACT, best)
    # Same slot, different key
    assert tt.probe(0xABCDEF + 16) is None


def test_depth_preferred_within_a_search() -> None:
    tt = TranspositionTable(16)
    tt.new_search()
    tt.store(5, 6, 10, Bound.EXACT, None)
    tt.store(5 + 16, 2, 99, Bound.LOWER, None)
    assert tt.probe(5) is not None
    assert tt.probe(5 + 16) is None
    # A new search may overwrite stale deep entries
    tt.new_search()
    tt.store(5 + 16, 1, 99, Bound.LOWER, None)
    assert tt.probe(5 + 16) is not None
    assert tt.replacements == 1


def test_clear_and_hashfull() -> None:
    tt = TranspositionTable(8)
    assert tt.hashfull() == 0
    for key in range(4):
        tt.store(key, 1, 0, Bound.EXACT, None)
    assert tt.hashfull() == 500
    tt.clear()
    assert tt.hashfull() == 0
    assert tt.probe(1) is None


def test_mate_scores_are_rebased_by_ply() -> None:
    # Mate found 7 plies from the root, stored at ply 3: 4 plies from that node
    stored = score_to_tt(MATE_SCORE - 7, 3)
    assert stored == MATE_SCORE - 4
    assert score_from_tt(stored, 5) == MATE_SCORE - 9
    assert score_from_tt(score_to_tt(-(TB_WIN - 6), 2), 2) == -(TB_WIN - 6)
    assert score_to_tt(150, 9) == 150
