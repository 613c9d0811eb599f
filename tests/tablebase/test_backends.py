from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import chess
import pytest
import requests

from talia.tablebase import (
    NOT_APPLICABLE,
    LichessBackend,
    Outcome,
    ProbeResult,
    SyzygyBackend,
)


KRK = "8/8/8/4k3/8/8/8/R3K3 w - - 0 1"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, bad_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self) -> Any:
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, response: Optional[FakeResponse] = None, error: Optional[Exception] = None) -> None:
        self.response = response
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, params: Dict[str, str], timeout: float) -> FakeResponse:
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response


def _lichess(session: FakeSession) -> LichessBackend:
    return LichessBackend("https://tb.example/standard", timeout=1.5, session=session)  # type: ignore[arg-type]


def test_lichess_win_with_best_move() -> None:
    payload = {
        "category": "win",
        "dtz": 17,
        "moves": [{"uci": "a1a5", "category": "loss"}, {"uci": "e1d2", "category": "loss"}],
    }
    session = FakeSession(FakeResponse(payload=payload))
    res = _lichess(session).probe(KRK, root=True)
    assert res == ProbeResult(Outcome.WIN, dtz=17, best_move="a1a5", source="lichess")
    assert session.requests == [
        {"url": "https://tb.example/standard", "params": {"fen": KRK}, "timeout": 1.5}
    ]


@pytest.mark.parametrize(
    "category, outcome",
    [
        ("syzygy-win", Outcome.WIN),
        ("loss", Outcome.LOSS),
        ("draw", Outcome.DRAW),
        ("cursed-win", Outcome.DRAW),
        ("blessed-loss", Outcome.DRAW),
        ("unknown", Outcome.NOT_APPLICABLE),
        ("maybe-win", Outcome.NOT_APPLICABLE),
    ],
)
def test_lichess_categories(category: str, outcome: Outcome) -> None:
    session = FakeSession(FakeResponse(payload={"category": category, "moves": []}))
    assert _lichess(session).probe(KRK).outcome is outcome


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("offline")),
        FakeSession(error=requests.Timeout("slow")),
        FakeSession(FakeResponse(status_code=429)),
        FakeSession(FakeResponse(bad_json=True)),
        FakeSession(FakeResponse(payload=["not", "a", "dict"])),
    ],
)
def test_lichess_failures_are_not_applicable(session: FakeSession) -> None:
    assert _lichess(session).probe(KRK, root=True) is NOT_APPLICABLE


class FakeTables:
    """Stands in for chess.syzygy.Tablebase: white to move wins KRK."""

    def __init__(self, missing: bool = False) -> None:
        self.missing = missing

    def get_wdl(self, board: chess.Board) -> Optional[int]:
        if self.missing:
            return None
        return 2 if board.turn == chess.WHITE else -2

    def get_dtz(self, board: chess.Board) -> Optional[int]:
        if board.turn == chess.WHITE:
            return 12
        # The rook lift leaves the shortest distance to zeroing
        return -3 if board.peek().uci() == "a1a5" else -9


class BrokenTables:
    def get_wdl(self, board: chess.Board) -> int:
        raise KeyError("KRvK.rtbw")

    def get_dtz(self, board: chess.Board) -> int:
        raise KeyError("KRvK.rtbz")


def test_syzygy_interior_probe() -> None:
    backend = SyzygyBackend(tables=FakeTables())
    res = backend.probe(KRK)
    assert res == ProbeResult(Outcome.WIN, dtz=12, best_move=None, source="syzygy")
    assert backend.interior


def test_syzygy_root_probe_picks_shortest_win() -> None:
    res = SyzygyBackend(tables=FakeTables()).probe(KRK, root=True)
    assert res.outcome is Outcome.WIN
    assert res.best_move == "a1a5"


def test_syzygy_missing_or_broken_tables() -> None:
    assert SyzygyBackend(tables=FakeTables(missing=True)).probe(KRK) is NOT_APPLICABLE
    backend = SyzygyBackend(tables=BrokenTables())
    assert backend.probe(KRK) is NOT_APPLICABLE
    assert backend.probe(KRK, root=True) is NOT_APPLICABLE


def test_syzygy_requires_path_or_tables() -> None:
    with pytest.raises(ValueError):
        SyzygyBackend()


@pytest.mark.skipif(not os.environ.get("TALIA_SYZYGY_PATH"), reason="TALIA_SYZYGY_PATH not set")
def test_real_syzygy_krk_is_a_win() -> None:
    backend = SyzygyBackend(os.environ["TALIA_SYZYGY_PATH"])
    try:
        res = backend.probe(KRK, root=True)
    finally:
        backend.close()
    assert res.outcome is Outcome.WIN
    assert res.best_move is not None
