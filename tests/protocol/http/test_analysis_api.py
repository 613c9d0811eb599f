from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from talia.config import Config
from talia.protocol.http.app import create_app


def _client() -> TestClient:
    return TestClient(create_app(Config()))


def test_game_search_returns_move_and_score() -> None:
    client = _client()
    game_id = client.post("/api/games").json()["game_id"]
    r = client.post(f"/api/games/{game_id}/search", json={"depth": 2})
    assert r.status_code == 200
    body = r.json()
    state = client.get(f"/api/games/{game_id}/state").json()
    assert body["best_move"] in state["legal_moves"]
    assert body["depth"] == 2
    assert body["source"] == "search"
    assert body["score"]["mate"] is None
    assert isinstance(body["score"]["cp"], int)
    assert body["pv"][0] == body["best_move"]
    # Searching does not touch the game
    assert state["move_history"] == []


def test_analyze_reports_mate() -> None:
    r = _client().post(
        "/api/analyze", json={"fen": "6k1/5ppp/8/8/8/8/5PPP/3R2K1 w - - 0 1", "depth": 3}
    )
    assert r.status_code == 200
    body = r.json()
    assert body["best_move"] == "d1d8"
    assert body["score"] == {"cp": None, "mate": 1}


def test_analyze_applies_moves() -> None:
    r = _client().post(
        "/api/analyze",
        json={
            "fen": "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1",
            "moves": ["f2f3", "e7e5", "g2g4"],
            "depth": 2,
        },
    )
    assert r.status_code == 200
    assert r.json()["best_move"] == "d8h4"


def test_analyze_illegal_move_is_400() -> None:
    r = _client().post("/api/analyze", json={"fen": "4k3/8/8/8/8/8/8/4K3 w - - 0 1", "moves": ["e1e3"]})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "illegal_move"


def test_analyze_non_ascii_digits_in_fen_is_400() -> None:
    fen = "rnbqkbnr/pppppppp/²²²²/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
    r = _client().post("/api/analyze", json={"fen": fen, "depth": 1})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "parse_error"


def test_zero_movetime_still_answers() -> None:
    r = _client().post(
        "/api/analyze",
        json={"fen": "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1", "movetime_ms": 0},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["source"] == "fallback"
    assert body["best_move"]


def test_search_validation_errors() -> None:
    client = _client()
    r = client.post("/api/analyze", json={"fen": "4k3/8/8/8/8/8/8/4K3 w - - 0 1", "depth": 0})
    assert r.status_code == 422
    err = r.json()["error"]
    assert err["code"] == "unprocessable_entity"
    assert any(fe["field"].endswith("depth") for fe in err["field_errors"])


def test_perft_endpoint() -> None:
    client = _client()
    r = client.post("/api/perft", json={"depth": 2})
    assert r.status_code == 200
    assert r.json() == {"nodes": 400, "divide": None}

    r = client.post("/api/perft", json={"depth": 1, "divide": True})
    body = r.json()
    assert body["nodes"] == 20
    assert body["divide"]["e2e4"] == 1

    r = client.post("/api/perft", json={"depth": 7})
    assert r.status_code == 422


def test_perft_rejects_unplayable_position() -> None:
    r = _client().post("/api/perft", json={"fen": "8/8/8/8/8/8/8/8 w - - 0 1", "depth": 1})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "parse_error"


def test_unhandled_exception_is_500_envelope() -> None:
    app: FastAPI = create_app(Config())

    @app.get("/boom")
    def boom() -> None:
        raise RuntimeError("kaput")

    client = TestClient(app, raise_server_exceptions=False)
    r = client.get("/boom")
    assert r.status_code == 500
    err = r.json()["error"]
    assert err["code"] == "internal_error"
    assert err["type"] == "server_error"
    assert "kaput" not in err["message"]
