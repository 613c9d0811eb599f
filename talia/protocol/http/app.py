from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from .error import (
    exception_handler,
    http_exception_handler,
    request_validation_exception_handler,
    talia_error_handler,
)
from .logging_middleware import RequestIDLoggingMiddleware
from .session import GameSession, InMemorySessionStore
from ...config import Config, load_config
from ...core import build_service, load_position
from ...engine.board import STARTPOS_FEN
from ...engine.errors import TaliaError
from ...engine.game import Game
from ...engine.perft import divide as perft_divide
from ...engine.perft import perft as perft_nodes
from ...search.service import SearchBudget, SearchResult, SearchService


logger = logging.getLogger(__name__)


class CreateGameRequest(BaseModel):
    fen: Optional[str] = Field(default=None, description="Start position; standard start if omitted")


class CreateGameResponse(BaseModel):
    game_id: str
    fen: str


class SetPositionRequest(BaseModel):
    fen: str = Field(..., description="FEN string")


class MoveRequest(BaseModel):
    move: str = Field(..., description="UCI move string, e.g., e2e4")


class SearchRequest(BaseModel):
    depth: Optional[int] = Field(default=None, ge=1, le=64)
    movetime_ms: Optional[int] = Field(default=None, ge=0)
    nodes: Optional[int] = Field(default=None, ge=1)


class AnalyzeRequest(SearchRequest):
    fen: str = Field(..., description="FEN string")
    moves: List[str] = Field(default_factory=list, description="UCI moves played from the FEN")


class PerftRequest(BaseModel):
    fen: str = Field(default=STARTPOS_FEN)
    depth: int = Field(default=1, ge=0, le=6)
    divide: bool = False


class PerftResponse(BaseModel):
    nodes: int
    divide: Optional[Dict[str, int]] = None


class Score(BaseModel):
    cp: Optional[int] = None
    mate: Optional[int] = None


class SearchResponse(BaseModel):
    best_move: Optional[str]
    score: Score
    pv: List[str]
    depth: int
    seldepth: int
    nodes: int
    qnodes: int
    tb_hits: int
    tt_hits: int
    time_ms: int
    source: str


class GameState(BaseModel):
    game_id: str
    fen: str
    legal_moves: List[str]
    status: str
    in_check: bool
    checkmate: bool
    stalemate: bool
    draw: bool
    last_move: Optional[str]
    move_history: List[str]


def _game_state(game_id: str, game: Game) -> GameState:
    history = game.move_history_uci()
    status = game.status()
    return GameState(
        game_id=game_id,
        fen=game.to_fen(),
        legal_moves=[m.to_uci() for m in game.legal_moves()],
        status=status,
        in_check=game.in_check(),
        checkmate=status == "checkmate",
        stalemate=status == "stalemate",
        draw=status in ("stalemate", "draw"),
        last_move=history[-1] if history else None,
        move_history=history,
    )


def _search_response(res: SearchResult) -> SearchResponse:
    # Score object: either cp or mate (UCI-style)
    score = Score(mate=res.mate_in) if res.mate_in is not None else Score(cp=res.score)
    return SearchResponse(
        best_move=res.best_move.to_uci() if res.best_move else None,
        score=score,
        pv=[m.to_uci() for m in res.pv],
        depth=res.depth,
        seldepth=res.seldepth,
        nodes=res.nodes,
        qnodes=res.qnodes,
        tb_hits=res.tb_hits,
        tt_hits=res.tt_hits,
        time_ms=res.time_ms,
        source=res.source,
    )


def _budget(req: SearchRequest) -> SearchBudget:
    return SearchBudget(max_depth=req.depth, max_time_ms=req.movetime_ms, max_nodes=req.nodes)


def create_app(config: Optional[Config] = None, service: Optional[SearchService] = None) -> FastAPI:
    cfg = config if config is not None else load_config()
    app = FastAPI(title="Talia Analysis API", version="0.1.0")

    logging.basicConfig(level=cfg.log_level)

    # Middleware & error handling
    app.add_middleware(RequestIDLoggingMiddleware)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(TaliaError, talia_error_handler)
    app.add_exception_handler(Exception, exception_handler)

    store = InMemorySessionStore()
    engine = service if service is not None else build_service(cfg)
    # One search at a time: the transposition table is shared
    search_lock = threading.Lock()

    def run_search(game: Game, req: SearchRequest) -> SearchResult:
        board = game.board.copy()
        with search_lock:
            return engine.search(board, _budget(req), history=game.history_hashes())

    @app.get("/healthz")
    async def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/games", response_model=CreateGameResponse)
    async def create_game(req: Optional[CreateGameRequest] = None) -> CreateGameResponse:
        game = Game.from_fen(req.fen) if req is not None and req.fen else Game.new()
        game_id = store.create(game)
        return CreateGameResponse(game_id=game_id, fen=game.to_fen())

    @app.get("/api/games/{game_id}/state", response_model=GameState)
    async def get_state(game_id: str) -> GameState:
        session = _require_session(store, game_id)
        with session.lock:
            return _game_state(game_id, session.game)

    @app.delete("/api/games/{game_id}")
    async def delete_game(game_id: str) -> Dict[str, str]:
        if not store.delete(game_id):
            raise HTTPException(status_code=404, detail="game not found")
        return {"status": "deleted"}

    @app.post("/api/games/{game_id}/position", response_model=GameState)
    async def set_position(game_id: str, req: SetPositionRequest) -> GameState:
        _require_session(store, game_id)
        session = store.replace(game_id, Game.from_fen(req.fen))
        with session.lock:
            return _game_state(game_id, session.game)

    @app.post("/api/games/{game_id}/move", response_model=GameState)
    async def make_move(game_id: str, req: MoveRequest) -> GameState:
        session = _require_session(store, game_id)
        with session.lock:
            session.game.apply_uci(req.move)
            return _game_state(game_id, session.game)

    @app.post("/api/games/{game_id}/undo", response_model=GameState)
    async def undo(game_id: str) -> GameState:
        session = _require_session(store, game_id)
        with session.lock:
            session.game.undo_move()
            return _game_state(game_id, session.game)

    @app.post("/api/games/{game_id}/search", response_model=SearchResponse)
    def search(game_id: str, req: SearchRequest) -> SearchResponse:
        session = _require_session(store, game_id)
        with session.lock:
            res = run_search(session.game, req)
        return _search_response(res)

    @app.post("/api/analyze", response_model=SearchResponse)
    def analyze(req: AnalyzeRequest) -> SearchResponse:
        game = Game.from_fen(req.fen)
        for u in req.moves:
            game.apply_uci(u)
        return _search_response(run_search(game, req))

    @app.post("/api/perft", response_model=PerftResponse)
    def perft(req: PerftRequest) -> PerftResponse:
        board = load_position(req.fen)
        if req.divide and req.depth >= 1:
            counts = perft_divide(board, req.depth)
            return PerftResponse(nodes=sum(counts.values()), divide=counts)
        return PerftResponse(nodes=perft_nodes(board, req.depth))

    return app


def _require_session(store: InMemorySessionStore, game_id: str) -> GameSession:
    session = store.get(game_id)
    if session is None:
        raise HTTPException(status_code=404, detail="game not found")
    return session
