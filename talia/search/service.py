from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from talia.config import SearchConfig
from talia.engine.board import Board, PieceKind, UndoRecord
from talia.engine.move import Move, MoveFlag
from talia.engine.movegen import capture_moves, legal_moves
from talia.eval import PIECE_VALUES, evaluate
from talia.tablebase import Outcome, Tablebase

from .tt import (
    MATE_BOUND,
    MATE_SCORE,
    TB_WIN,
    Bound,
    TranspositionTable,
    score_from_tt,
    score_to_tt,
)


logger = logging.getLogger(__name__)

INF = 10_000_000

# Attacker value for MVV-LVA; the king ranks as the most expensive attacker
_ATTACKER_VALUES = PIECE_VALUES[:5] + (20_000,)
_PROMOTION_VALUES = {"q": 900, "r": 500, "b": 330, "n": 320}


class SearchAborted(Exception):
    """Raised inside the tree when the budget runs out or a stop is requested."""


@dataclass
class SearchBudget:
    """Limits for one search. With nothing set the configured depth applies."""

    max_depth: Optional[int] = None
    max_time_ms: Optional[int] = None
    max_nodes: Optional[int] = None


@dataclass
class SearchResult:
    best_move: Optional[Move]
    score: int
    mate_in: Optional[int]
    pv: List[Move]
    depth: int
    nodes: int
    qnodes: int
    tb_hits: int
    tt_hits: int
    seldepth: int
    time_ms: int
    iters: List[Dict[str, int]] = field(default_factory=list)
    source: str = "search"

    @property
    def score_cp(self) -> Optional[int]:
        return None if self.mate_in is not None else self.score


def mate_in_from_score(score: int) -> Optional[int]:
    """Moves to mate for a score in the mate window, negative when being mated."""
    if score >= MATE_BOUND:
        return (MATE_SCORE - score + 1) // 2
    if score <= -MATE_BOUND:
        return -((MATE_SCORE + score + 1) // 2)
    return None


def mvv_lva(board: Board, m: Move) -> int:
    """Capture ordering key: most valuable victim first, then least valuable attacker."""
    if m.flags & MoveFlag.EN_PASSANT:
        victim = PieceKind.PAWN
    else:
        vp = board.piece_at(m.to_sq)
        victim = vp % 6 if vp is not None else PieceKind.PAWN
    ap = board.piece_at(m.from_sq)
    attacker = ap % 6 if ap is not None else PieceKind.PAWN
    return PIECE_VALUES[victim] * 10 - _ATTACKER_VALUES[attacker]


OnIter = Callable[[SearchResult], None]


class SearchService:
    """Iterative-deepening alpha-beta search.

    The transposition table lives on the service and survives between
    searches; call :meth:`new_game` to clear it.
    """

    def __init__(
        self, config: Optional[SearchConfig] = None, tablebase: Optional[Tablebase] = None
    ) -> None:
        self.config = config if config is not None else SearchConfig()
        self.tablebase = tablebase
        self.tt = TranspositionTable(self.config.tt_entries)

    def new_game(self) -> None:
        self.tt.clear()

    def resize_tt(self, entries: int) -> None:
        self.tt = TranspositionTable(entries)

    def _depth_cap(self, budget: SearchBudget) -> int:
        if budget.max_depth is not None:
            cap = budget.max_depth
        elif budget.max_time_ms is not None or budget.max_nodes is not None:
            cap = self.config.max_depth
        else:
            cap = self.config.depth
        return max(1, min(cap, self.config.max_depth))

    def search(
        self,
        board: Board,
        budget: Optional[SearchBudget] = None,
        *,
        history: Optional[Sequence[int]] = None,
        on_iter: Optional[OnIter] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> SearchResult:
        """Search ``board`` for the best move within ``budget``.

        Args:
            board (Board): Root position. Mutated during the search and
                restored before returning, also when the search is aborted.
            budget (Optional[SearchBudget]): Depth, time and node limits.
            history (Optional[Sequence[int]]): Zobrist hashes of the game
                positions before the root, used for repetition draws.
            on_iter (Optional[OnIter]): Called with a result snapshot after
                each completed iteration.
            stop_event (Optional[threading.Event]): Set from another thread to
                stop the search; the deepest completed iteration is returned.

        Returns:
            SearchResult: Scores are from the side to move's perspective.
        """
        budget = budget if budget is not None else SearchBudget()
        cfg = self.config
        tablebase = self.tablebase
        tt = self.tt
        use_tt = cfg.use_tt
        use_quiescence = cfg.use_quiescence
        poll_interval = max(1, cfg.poll_interval)
        q_max_depth = cfg.q_max_depth
        max_nodes = budget.max_nodes
        max_depth = self._depth_cap(budget)

        start = time.perf_counter()
        deadline = start + budget.max_time_ms / 1000.0 if budget.max_time_ms is not None else None

        nodes = 0
        qnodes = 0
        tb_hits = 0
        tt_hits = 0
        seldepth = 0

        # Game history counts and the current search path, for repetition draws
        game_counts: Dict[int, int] = {}
        for h in history or ():
            game_counts[h] = game_counts.get(h, 0) + 1
        path_counts: Dict[int, int] = {board.zobrist_hash: 1}

        # Killer moves (two per ply) and history heuristic
        killers: Dict[int, List[Move]] = {}
        history_scores: Dict[Tuple[str, int, int], int] = {}

        probe_interior = tablebase is not None and tablebase.has_interior_backend

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        def poll() -> None:
            if max_nodes is not None and nodes >= max_nodes:
                raise SearchAborted()
            if nodes % poll_interval == 0:
                if stop_event is not None and stop_event.is_set():
                    raise SearchAborted()
                if deadline is not None and time.perf_counter() >= deadline:
                    raise SearchAborted()

        def is_repetition() -> bool:
            h = board.zobrist_hash
            in_path = path_counts.get(h, 0)
            return in_path >= 2 or game_counts.get(h, 0) + in_path >= 3

        def enter(move: Move) -> UndoRecord:
            record = board.apply(move)
            h = board.zobrist_hash
            path_counts[h] = path_counts.get(h, 0) + 1
            return record

        def leave(record: UndoRecord) -> None:
            h = board.zobrist_hash
            cnt = path_counts.get(h, 0)
            if cnt <= 1:
                path_counts.pop(h, None)
            else:
                path_counts[h] = cnt - 1
            board.undo(record)

        def order_moves(moves: List[Move], tt_move: Optional[Move], ply: int) -> List[Move]:
            killer_list = killers.get(ply, [])
            stm = board.side_to_move

            def move_score(m: Move) -> int:
                if tt_move is not None and m == tt_move:
                    return 3_000_000
                score = 0
                if m.is_capture:
                    score += 2_000_000 + mvv_lva(board, m)
                if m.promotion is not None:
                    score += 1_500_000 + _PROMOTION_VALUES[m.promotion]
                if score:
                    return score
                for idx, km in enumerate(killer_list):
                    if km == m:
                        return 1_000_000 - idx
                return history_scores.get((stm, m.from_sq, m.to_sq), 0)

            return sorted(moves, key=move_score, reverse=True)

        def note_cutoff(m: Move, d: int, ply: int) -> None:
            if m.is_capture or m.promotion is not None:
                return
            kl = killers.get(ply, [])
            if m not in kl:
                killers[ply] = ([m] + kl)[:2]
            key = (board.side_to_move, m.from_sq, m.to_sq)
            history_scores[key] = history_scores.get(key, 0) + d * d

        def negamax(d: int, alpha: int, beta: int, ply: int) -> Tuple[int, List[Move]]:
            nonlocal nodes, seldepth, tb_hits, tt_hits
            nodes += 1
            if ply > seldepth:
                seldepth = ply
            poll()

            if ply > 0:
                if board.halfmove_clock >= 100 or is_repetition():
                    return 0, []
                if probe_interior and board.piece_count() <= tablebase.max_pieces:
                    probe = tablebase.probe(board)
                    if probe.applicable:
                        tb_hits += 1
                        if probe.outcome is Outcome.WIN:
                            return TB_WIN - ply, []
                        if probe.outcome is Outcome.LOSS:
                            return -(TB_WIN - ply), []
                        return 0, []

            moves = legal_moves(board)
            if not moves:
                if board.in_check():
                    # Checkmated: faster mates score higher for the winner
                    return -(MATE_SCORE - ply), []
                return 0, []

            if d <= 0:
                if use_quiescence:
                    return qsearch(alpha, beta, ply, 0)
                return evaluate(board), []

            tt_move: Optional[Move] = None
            if use_tt:
                entry = tt.probe(board.zobrist_hash)
                if entry is not None:
                    tt_move = entry.best
                    if ply > 0 and entry.depth >= d:
                        score = score_from_tt(entry.score, ply)
                        if (
                            entry.bound is Bound.EXACT
                            or (entry.bound is Bound.LOWER and score >= beta)
                            or (entry.bound is Bound.UPPER and score <= alpha)
                        ):
                            tt_hits += 1
                            return score, ([entry.best] if entry.best is not None else [])

            alpha_orig = alpha
            best_score = -INF
            best_line: List[Move] = []
            best_move: Optional[Move] = None
            for m in order_moves(moves, tt_move, ply):
                record = enter(m)
                try:
                    child_score, child_pv = negamax(d - 1, -beta, -alpha, ply + 1)
                finally:
                    leave(record)
                score = -child_score
                if score > best_score:
                    best_score = score
                    best_line = [m] + child_pv
                    best_move = m
                if score > alpha:
                    alpha = score
                if alpha >= beta:
                    note_cutoff(m, d, ply)
                    break

            if use_tt:
                if best_score <= alpha_orig:
                    bound = Bound.UPPER
                elif best_score >= beta:
                    bound = Bound.LOWER
                else:
                    bound = Bound.EXACT
                tt.store(board.zobrist_hash, d, score_to_tt(best_score, ply), bound, best_move)
            return best_score, best_line

        def qsearch(alpha: int, beta: int, ply: int, qdepth: int) -> Tuple[int, List[Move]]:
            nonlocal nodes, qnodes, seldepth
            nodes += 1
            qnodes += 1
            if ply > seldepth:
                seldepth = ply
            poll()

            if board.halfmove_clock >= 100 or is_repetition():
                return 0, []

            in_check = board.in_check()
            if in_check:
                moves = legal_moves(board)
                if not moves:
                    return -(MATE_SCORE - ply), []
                if qdepth >= q_max_depth:
                    return evaluate(board), []
                best_score = -INF
            else:
                stand_pat = evaluate(board)
                if stand_pat >= beta or qdepth >= q_max_depth:
                    return stand_pat, []
                if stand_pat > alpha:
                    alpha = stand_pat
                best_score = stand_pat
                moves = capture_moves(board)

            best_line: List[Move] = []
            for m in order_moves(moves, None, ply):
                record = enter(m)
                try:
                    child_score, child_pv = qsearch(-beta, -alpha, ply + 1, qdepth + 1)
                finally:
                    leave(record)
                score = -child_score
                if score > best_score:
                    best_score = score
                    if score > alpha:
                        alpha = score
                        best_line = [m] + child_pv
                if alpha >= beta:
                    break
            return best_score, best_line

        def snapshot(
            best: Optional[Move], score: int, pv: List[Move], depth: int, source: str
        ) -> SearchResult:
            return SearchResult(
                best_move=best,
                score=score,
                mate_in=mate_in_from_score(score),
                pv=list(pv),
                depth=depth,
                nodes=nodes,
                qnodes=qnodes,
                tb_hits=tb_hits,
                tt_hits=tt_hits,
                seldepth=seldepth,
                time_ms=elapsed_ms(),
                iters=list(iters),
                source=source,
            )

        iters: List[Dict[str, int]] = []
        root_moves = legal_moves(board)
        if not root_moves:
            in_check = board.in_check()
            terminal = snapshot(None, -MATE_SCORE if in_check else 0, [], 0, "terminal")
            terminal.mate_in = 0 if in_check else None
            logger.info(
                "Search at terminal position",
                extra={"fen": board.to_fen(), "checkmate": in_check},
            )
            return terminal

        if tablebase is not None and tablebase.enabled:
            probe = tablebase.probe(board, root=True)
            if probe.applicable and probe.best_move is not None:
                tb_move = next((m for m in root_moves if m.to_uci() == probe.best_move), None)
                if tb_move is not None:
                    tb_hits += 1
                    score = {Outcome.WIN: TB_WIN, Outcome.LOSS: -TB_WIN}.get(probe.outcome, 0)
                    logger.info(
                        "Root tablebase hit",
                        extra={"move": probe.best_move, "outcome": probe.outcome.value},
                    )
                    return snapshot(tb_move, score, [tb_move], 0, "tablebase")

        tt.new_search()
        result: Optional[SearchResult] = None
        for d in range(1, max_depth + 1):
            if deadline is not None and time.perf_counter() >= deadline:
                break
            if stop_event is not None and stop_event.is_set():
                break
            iter_start = time.perf_counter()
            prev_nodes, prev_qnodes = nodes, qnodes
            try:
                score, pv = negamax(d, -INF, INF, 0)
            except SearchAborted:
                logger.debug("Search aborted", extra={"depth": d, "nodes": nodes})
                break
            iters.append(
                {
                    "depth": d,
                    "time_ms": int((time.perf_counter() - iter_start) * 1000),
                    "nodes": nodes - prev_nodes,
                    "qnodes": qnodes - prev_qnodes,
                    "score": score,
                    "seldepth": seldepth,
                }
            )
            best = pv[0] if pv else None
            result = snapshot(best, score, pv, d, "search")
            logger.debug(
                "Iteration complete",
                extra={"depth": d, "score": score, "nodes": nodes, "pv": [m.to_uci() for m in pv]},
            )
            if on_iter is not None:
                on_iter(result)
            # A forced mate found within the horizon will not change with depth
            if result.mate_in is not None and abs(result.mate_in) * 2 <= d:
                break

        if result is None or result.best_move is None:
            # Depth 1 did not complete: static evaluation and the first ordered move
            fallback = order_moves(root_moves, None, 0)[0]
            result = snapshot(fallback, evaluate(board), [fallback], 0, "fallback")
        else:
            result = replace(
                result,
                nodes=nodes,
                qnodes=qnodes,
                tt_hits=tt_hits,
                tb_hits=tb_hits,
                seldepth=seldepth,
                time_ms=elapsed_ms(),
            )

        logger.info(
            "Search finished",
            extra={
                "depth": result.depth,
                "score": result.score,
                "best_move": result.best_move.to_uci() if result.best_move else None,
                "nodes": result.nodes,
                "time_ms": result.time_ms,
                "source": result.source,
            },
        )
        return result
