from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ...config import Config, load_config
from ...engine.errors import TaliaError
from ...engine.game import Game
from ...search.service import SearchBudget, SearchResult, SearchService
from ...tablebase import Tablebase


logger = logging.getLogger(__name__)

Writer = Callable[[str], None]

ENGINE_NAME = "Talia"
ENGINE_AUTHOR = "Talia developers"
# Hash option sizing: one MiB buys about this many table slots
ENTRIES_PER_MB = 16384
MAX_HASH_MB = 4096

# Clock allocation
DEFAULT_MOVES_TO_GO = 30
MOVE_OVERHEAD_MS = 50
MIN_THINK_MS = 10


@dataclass
class GoParams:
    depth: Optional[int] = None
    movetime_ms: Optional[int] = None
    nodes: Optional[int] = None
    wtime: Optional[int] = None
    btime: Optional[int] = None
    winc: Optional[int] = None
    binc: Optional[int] = None
    movestogo: Optional[int] = None
    infinite: bool = False


# go token -> GoParams attribute for tokens followed by an integer
_GO_INT_FIELDS = {
    "depth": "depth",
    "movetime": "movetime_ms",
    "nodes": "nodes",
    "wtime": "wtime",
    "btime": "btime",
    "winc": "winc",
    "binc": "binc",
    "movestogo": "movestogo",
}


def allocate_time(remaining: int, increment: int, moves_to_go: Optional[int]) -> int:
    """Milliseconds to spend on this move given the clock state.

    An even share of the remaining time plus half the increment, never more
    than 70% of the clock nor eating into the move overhead.
    """
    share = remaining // (moves_to_go if moves_to_go and moves_to_go > 0 else DEFAULT_MOVES_TO_GO)
    budget = share + increment // 2
    ceiling = min(remaining * 7 // 10, remaining - MOVE_OVERHEAD_MS)
    if ceiling <= 0:
        # Nearly flagged: answer at once
        return max(1, remaining - 1)
    return max(MIN_THINK_MS, min(budget, ceiling))


def _split_keyword(args: List[str], keyword: str) -> Tuple[List[str], Optional[List[str]]]:
    """Split ``args`` at the first ``keyword``; the tail is None when absent."""
    if keyword not in args:
        return args, None
    at = args.index(keyword)
    return args[:at], args[at + 1 :]


class UCIEngine:
    """Holds the UCI session: current game, search service and worker thread.

    Each ``go`` runs on a daemon thread over a copy of the game board so the
    command loop stays responsive to ``stop``. A generation counter marks
    workers superseded by a later ``go`` or ``ucinewgame``; their output is
    dropped.
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        self.config = config if config is not None else load_config()
        self.game: Game = Game.new()
        self.search = SearchService(self.config.search, Tablebase.from_config(self.config.tablebase))
        self.hash_mb: int = max(1, self.config.search.tt_entries // ENTRIES_PER_MB)
        self._worker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._last_result: Optional[SearchResult] = None
        self._generation = 0

    # --- Commands ---
    def cmd_uci(self, write: Writer) -> None:
        write(f"id name {ENGINE_NAME}")
        write(f"id author {ENGINE_AUTHOR}")
        write(f"option name Hash type spin default {self.hash_mb} min 1 max {MAX_HASH_MB}")
        write("option name SyzygyPath type string default <empty>")
        online = str(self.config.tablebase.online).lower()
        write(f"option name OnlineTablebase type check default {online}")
        write("uciok")

    def cmd_isready(self, write: Writer) -> None:
        write("readyok")

    def cmd_ucinewgame(self) -> None:
        self._cancel_running_search()
        self.game = Game.new()
        self.search.new_game()

    def cmd_position(self, args: List[str]) -> None:
        """``position (startpos | fen <fields>) [moves <uci>...]``.

        An unparsable FEN keeps the current game. Move replay stops at the
        first illegal move, keeping the moves before it.
        """
        setup, moves = _split_keyword(args, "moves")
        if setup[:1] == ["startpos"]:
            game = Game.new()
        elif setup[:1] == ["fen"]:
            try:
                game = Game.from_fen(" ".join(setup[1:]))
            except TaliaError as e:
                logger.warning("Ignoring invalid position", extra={"error": str(e)})
                return
        else:
            logger.warning("Ignoring malformed position command", extra={"args": args})
            return
        for uci in moves or ():
            try:
                game.apply_uci(uci)
            except TaliaError as e:
                logger.warning("Stopping at invalid move", extra={"move": uci, "error": str(e)})
                break
        self.game = game

    def cmd_setoption(self, args: List[str]) -> None:
        """``setoption name <name> [value <value>]``; names are case-insensitive."""
        head, value_tokens = _split_keyword(args, "value")
        if head[:1] == ["name"]:
            head = head[1:]
        name = " ".join(head).lower()
        value = " ".join(value_tokens or ()).strip()

        if name == "hash":
            try:
                mb = int(value)
            except ValueError:
                logger.warning("Ignoring invalid Hash value", extra={"value": value})
                return
            self.hash_mb = min(MAX_HASH_MB, max(1, mb))
            self.search.resize_tt(self.hash_mb * ENTRIES_PER_MB)
        elif name == "syzygypath":
            self.config.tablebase.syzygy_path = None if value in ("", "<empty>") else value
            self._rebuild_tablebase()
        elif name == "onlinetablebase":
            self.config.tablebase.online = value.lower() == "true"
            self._rebuild_tablebase()
        else:
            logger.info("Unknown option", extra={"option": name})

    def cmd_go(self, args: List[str], write: Writer) -> None:
        params = self._parse_go_args(args)
        budget = self._select_budget(params)
        self._cancel_running_search()

        stop_event = self._stop_event = threading.Event()
        self._generation += 1
        generation = self._generation
        with self._lock:
            self._last_result = None
        board = self.game.board.copy()
        history = self.game.history_hashes()

        def run() -> None:
            res = self.search.search(
                board,
                budget,
                history=history,
                on_iter=self._make_iter_callback(generation, write),
                stop_event=stop_event,
            )
            with self._lock:
                self._last_result = res
            if params.infinite:
                # bestmove only after the GUI says stop
                stop_event.wait()
            if generation != self._generation:
                return
            self._emit_info(res, write)
            write(f"bestmove {res.best_move.to_uci() if res.best_move else '(none)'}")

        self._worker = threading.Thread(target=run, name="uci-search", daemon=True)
        self._worker.start()

    def cmd_stop(self) -> None:
        # The worker reports its deepest completed iteration
        self._stop_event.set()
        self.wait()

    def cmd_quit(self) -> None:
        self._cancel_running_search()

    def cmd_display(self, write: Writer) -> None:
        for line in str(self.game.board).splitlines():
            write(line)

    def wait(self, timeout: Optional[float] = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    @property
    def last_result(self) -> Optional[SearchResult]:
        with self._lock:
            return self._last_result

    # --- Helpers ---
    def _rebuild_tablebase(self) -> None:
        self.search.tablebase = Tablebase.from_config(self.config.tablebase)

    def _parse_go_args(self, args: List[str]) -> GoParams:
        params = GoParams()
        tokens = iter(args)
        for tok in tokens:
            if tok == "infinite":
                params.infinite = True
                continue
            attr = _GO_INT_FIELDS.get(tok)
            if attr is None:
                # searchmoves, ponder, mate: not supported
                continue
            raw = next(tokens, None)
            if raw is None:
                break
            try:
                setattr(params, attr, int(raw))
            except ValueError:
                logger.warning("Ignoring invalid go argument", extra={"arg": tok, "value": raw})
        return params

    def _select_budget(self, params: GoParams) -> SearchBudget:
        # infinite, then movetime, then the clock, then depth/nodes alone
        if params.infinite:
            return SearchBudget(max_depth=params.depth or self.config.search.max_depth)
        if params.movetime_ms is not None:
            return SearchBudget(
                max_depth=params.depth, max_time_ms=max(0, params.movetime_ms), max_nodes=params.nodes
            )
        white = self.game.board.side_to_move == "w"
        remaining = params.wtime if white else params.btime
        if remaining is not None:
            increment = (params.winc if white else params.binc) or 0
            return SearchBudget(
                max_depth=params.depth,
                max_time_ms=allocate_time(remaining, increment, params.movestogo),
                max_nodes=params.nodes,
            )
        return SearchBudget(max_depth=params.depth, max_nodes=params.nodes)

    def _format_info(self, res: SearchResult) -> str:
        elapsed = max(0, res.time_ms)
        nps = res.nodes * 1000 // max(1, elapsed)
        score = f"mate {res.mate_in}" if res.mate_in is not None else f"cp {res.score}"
        fields = [
            f"info depth {res.depth}",
            f"seldepth {res.seldepth}",
            f"time {elapsed}",
            f"nodes {res.nodes}",
            f"nps {nps}",
            f"tbhits {res.tb_hits}",
            f"hashfull {self.search.tt.hashfull()}",
            f"score {score}",
        ]
        if res.pv:
            fields.append("pv " + " ".join(m.to_uci() for m in res.pv))
        return " ".join(fields)

    def _emit_info(self, res: SearchResult, write: Writer) -> None:
        # Completed iterations were already reported through the callback
        if res.source != "search":
            write(self._format_info(res))

    def _make_iter_callback(self, generation: int, write: Writer) -> Callable[[SearchResult], None]:
        def report(res: SearchResult) -> None:
            if generation != self._generation:
                return
            with self._lock:
                self._last_result = res
            write(self._format_info(res))

        return report

    def _cancel_running_search(self) -> None:
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._generation += 1
            self._stop_event.set()
            worker.join()


def _stdout_writer(line: str) -> None:
    sys.stdout.write(f"{line}\n")
    sys.stdout.flush()


def run_uci(
    config: Optional[Config] = None,
    lines: Optional[Iterable[str]] = None,
    write: Writer = _stdout_writer,
) -> None:
    """Read UCI commands from ``lines`` (default stdin) until ``quit`` or EOF."""
    eng = UCIEngine(config)
    handlers: Dict[str, Callable[[List[str]], None]] = {
        "uci": lambda args: eng.cmd_uci(write),
        "isready": lambda args: eng.cmd_isready(write),
        "setoption": eng.cmd_setoption,
        "ucinewgame": lambda args: eng.cmd_ucinewgame(),
        "position": eng.cmd_position,
        "go": lambda args: eng.cmd_go(args, write),
        "stop": lambda args: eng.cmd_stop(),
        "d": lambda args: eng.cmd_display(write),
    }
    for raw in lines if lines is not None else sys.stdin:
        tokens = raw.split()
        if not tokens:
            continue
        cmd, args = tokens[0], tokens[1:]
        if cmd == "quit":
            eng.cmd_quit()
            return
        handler = handlers.get(cmd)
        if handler is None:
            # Unknown commands are ignored
            logger.debug("Unknown UCI command", extra={"command": cmd})
            continue
        handler(args)
    # Input closed: let an in-flight search report before exiting
    eng.wait()
