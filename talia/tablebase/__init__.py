"""Endgame tablebase probing.

Two backends are supported: local Syzygy files read through python-chess,
and the public Lichess tablebase over HTTP. Outcomes are always reported
from the side to move's perspective, and wins or losses that the fifty-move
rule would turn into draws are reported as draws.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import chess
import chess.syzygy
import requests

from talia.config import LICHESS_TABLEBASE_URL, TablebaseConfig
from talia.engine.board import Board


logger = logging.getLogger(__name__)

MAX_TABLEBASE_PIECES = 7


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class ProbeResult:
    """Result of a tablebase probe.

    Attributes:
        outcome (Outcome): Game-theoretic value for the side to move.
        dtz (Optional[int]): Distance to zeroing move, when known.
        best_move (Optional[str]): Best move in UCI form, when the backend
            supplies one (root probes only).
        source (Optional[str]): Name of the backend that answered.
    """

    outcome: Outcome
    dtz: Optional[int] = None
    best_move: Optional[str] = None
    source: Optional[str] = None

    @property
    def applicable(self) -> bool:
        return self.outcome is not Outcome.NOT_APPLICABLE


NOT_APPLICABLE = ProbeResult(Outcome.NOT_APPLICABLE)


class TablebaseBackend(Protocol):
    name: str
    # Cheap and local enough to be probed inside the search tree
    interior: bool

    def probe(self, fen: str, *, root: bool = False) -> ProbeResult: ...


def _wdl_outcome(wdl: int) -> Outcome:
    # Cursed wins (1) and blessed losses (-1) are draws under the fifty-move rule
    if wdl >= 2:
        return Outcome.WIN
    if wdl <= -2:
        return Outcome.LOSS
    return Outcome.DRAW


class SyzygyBackend:
    """Local Syzygy tables via :mod:`chess.syzygy`.

    Missing tables make the probe not applicable; read errors are logged
    and treated the same way.
    """

    name = "syzygy"
    interior = True

    def __init__(self, path: Optional[str] = None, tables: Any = None) -> None:
        if tables is None:
            if path is None:
                raise ValueError("either path or tables is required")
            tables = chess.syzygy.open_tablebase(path)
        self._tables = tables
        self._warned = False

    def close(self) -> None:
        close = getattr(self._tables, "close", None)
        if close is not None:
            close()

    def probe(self, fen: str, *, root: bool = False) -> ProbeResult:
        board = chess.Board(fen)
        try:
            wdl = self._tables.get_wdl(board)
            if wdl is None:
                return NOT_APPLICABLE
            dtz = self._tables.get_dtz(board)
            best = self._best_move(board, wdl) if root else None
        except (KeyError, ValueError, OSError) as e:
            self._log_failure(fen, e)
            return NOT_APPLICABLE
        return ProbeResult(_wdl_outcome(wdl), dtz=dtz, best_move=best, source=self.name)

    def _best_move(self, board: chess.Board, wdl: int) -> Optional[str]:
        # Rank children by our value; wins prefer mate, then zeroing moves, then short DTZ
        best_key: Optional[Tuple[int, ...]] = None
        best_move: Optional[chess.Move] = None
        for move in board.legal_moves:
            zeroing = board.is_zeroing(move)
            board.push(move)
            try:
                if board.is_checkmate():
                    return move.uci()
                child_wdl = self._tables.get_wdl(board)
                child_dtz = self._tables.get_dtz(board)
            finally:
                board.pop()
            if child_wdl is None or child_dtz is None:
                return None
            value = -child_wdl
            if value >= 2:
                key = (2, int(zeroing), -abs(child_dtz))
            elif value <= -2:
                key = (-2, 0, abs(child_dtz))
            else:
                key = (0, int(zeroing), 0)
            if best_key is None or key > best_key:
                best_key, best_move = key, move
        return best_move.uci() if best_move is not None else None

    def _log_failure(self, fen: str, exc: Exception) -> None:
        if not self._warned:
            logger.warning("Syzygy probe failed", extra={"fen": fen, "error": str(exc)})
            self._warned = True
        else:
            logger.debug("Syzygy probe failed", extra={"fen": fen, "error": str(exc)})


_LICHESS_CATEGORIES = {
    "win": Outcome.WIN,
    "syzygy-win": Outcome.WIN,
    "loss": Outcome.LOSS,
    "syzygy-loss": Outcome.LOSS,
    "draw": Outcome.DRAW,
    "cursed-win": Outcome.DRAW,
    "blessed-loss": Outcome.DRAW,
}


class LichessBackend:
    """Online probe against the Lichess tablebase HTTP API.

    Only used at the root: one request per probe is far too slow for
    interior nodes.
    """

    name = "lichess"
    interior = False

    def __init__(
        self,
        url: str = LICHESS_TABLEBASE_URL,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._session = session if session is not None else requests.Session()
        self._warned = False

    def probe(self, fen: str, *, root: bool = False) -> ProbeResult:
        try:
            response = self._session.get(self._url, params={"fen": fen}, timeout=self._timeout)
        except requests.RequestException as e:
            self._log_failure(fen, str(e))
            return NOT_APPLICABLE
        if response.status_code != 200:
            self._log_failure(fen, f"status {response.status_code}")
            return NOT_APPLICABLE
        try:
            data = response.json()
        except ValueError as e:
            self._log_failure(fen, f"invalid JSON: {e}")
            return NOT_APPLICABLE
        if not isinstance(data, dict):
            self._log_failure(fen, "unexpected payload")
            return NOT_APPLICABLE

        outcome = _LICHESS_CATEGORIES.get(data.get("category", ""))
        if outcome is None:
            # unknown / maybe-win / maybe-loss: not a result the search can trust
            return NOT_APPLICABLE
        dtz = data.get("dtz")
        moves = data.get("moves") or []
        best = None
        if moves and isinstance(moves[0], dict):
            best = moves[0].get("uci")
        return ProbeResult(
            outcome,
            dtz=dtz if isinstance(dtz, int) else None,
            best_move=best,
            source=self.name,
        )

    def _log_failure(self, fen: str, reason: str) -> None:
        if not self._warned:
            logger.warning("Lichess tablebase unavailable", extra={"fen": fen, "reason": reason})
            self._warned = True
        else:
            logger.debug("Lichess tablebase unavailable", extra={"fen": fen, "reason": reason})


class Tablebase:
    """Front for an ordered list of backends with a bounded result cache.

    Thread-safe: the cache is guarded by a lock; backends are read-only.
    """

    def __init__(
        self,
        backends: Sequence[TablebaseBackend] = (),
        max_pieces: int = MAX_TABLEBASE_PIECES,
        cache_size: int = 4096,
    ) -> None:
        self.backends: List[TablebaseBackend] = list(backends)
        self.max_pieces = min(max_pieces, MAX_TABLEBASE_PIECES)
        self._cache_size = cache_size
        self._cache: "OrderedDict[Tuple[str, bool], ProbeResult]" = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, cfg: TablebaseConfig, session: Optional[requests.Session] = None
    ) -> "Tablebase":
        backends: List[TablebaseBackend] = []
        if cfg.syzygy_path:
            try:
                backends.append(SyzygyBackend(cfg.syzygy_path))
            except (OSError, ValueError) as e:
                logger.warning(
                    "Could not open Syzygy tables",
                    extra={"path": cfg.syzygy_path, "error": str(e)},
                )
        if cfg.online:
            backends.append(LichessBackend(cfg.online_url, cfg.timeout_s, session))
        return cls(backends, max_pieces=cfg.max_pieces, cache_size=cfg.cache_size)

    @property
    def enabled(self) -> bool:
        return bool(self.backends)

    @property
    def has_interior_backend(self) -> bool:
        return any(b.interior for b in self.backends)

    def is_applicable(self, board: Board) -> bool:
        return (
            board.piece_count() <= self.max_pieces
            and not board.castling
            and board.halfmove_clock < 100
        )

    def probe(self, board: Board, *, root: bool = False) -> ProbeResult:
        """Probe ``board`` through the configured backends.

        Args:
            board (Board): Position to probe. Not modified.
            root (bool): Root probes also consult root-only backends and ask
                for a best move.

        Returns:
            ProbeResult: First applicable backend answer, or
            :data:`NOT_APPLICABLE`.
        """
        if not self.backends or not self.is_applicable(board):
            return NOT_APPLICABLE
        key = (board.position_key(), root)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached

        fen = board.to_fen()
        result = NOT_APPLICABLE
        for backend in self.backends:
            if not root and not backend.interior:
                continue
            answer = backend.probe(fen, root=root)
            if answer.applicable:
                result = answer
                break
        logger.debug(
            "Tablebase probe",
            extra={"fen": fen, "root": root, "outcome": result.outcome.value},
        )

        with self._lock:
            self._cache[key] = result
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return result

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
