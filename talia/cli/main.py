from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import uvicorn

from ..config import Config, load_config
from ..core import build_service, load_position
from ..engine.board import STARTPOS_FEN
from ..engine.errors import TaliaError
from ..engine.perft import divide, perft
from ..protocol.http.app import create_app
from ..protocol.uci.loop import run_uci
from ..search.service import SearchBudget


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="talia", description="Talia chess analysis engine")
    parser.add_argument("--config", default=None, help="TOML config file (default: $TALIA_CONFIG)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP analysis API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    sub.add_parser("uci", help="Speak UCI on stdin/stdout")

    p_perft = sub.add_parser("perft", help="Count leaf nodes of the legal move tree")
    p_perft.add_argument("depth", type=int)
    p_perft.add_argument("--fen", default=STARTPOS_FEN)
    p_perft.add_argument("--divide", action="store_true", help="Print per-move counts")

    p_search = sub.add_parser("search", help="Search one position and print the best move")
    p_search.add_argument("--fen", default=STARTPOS_FEN)
    p_search.add_argument("--depth", type=int, default=None)
    p_search.add_argument("--movetime", type=int, default=None, help="Milliseconds")
    p_search.add_argument("--nodes", type=int, default=None)
    return parser


def _cmd_serve(cfg: Config, args: argparse.Namespace) -> int:
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port
    uvicorn.run(create_app(cfg), host=host, port=port, log_level=cfg.log_level.lower())
    return 0


def _cmd_perft(cfg: Config, args: argparse.Namespace) -> int:
    board = load_position(args.fen)
    if args.divide and args.depth >= 1:
        counts = divide(board, args.depth)
        for move in sorted(counts):
            print(f"{move}: {counts[move]}")
        print(f"\nNodes searched: {sum(counts.values())}")
    else:
        print(perft(board, args.depth))
    return 0


def _cmd_search(cfg: Config, args: argparse.Namespace) -> int:
    board = load_position(args.fen)
    budget = SearchBudget(max_depth=args.depth, max_time_ms=args.movetime, max_nodes=args.nodes)
    res = build_service(cfg).search(board, budget)
    score = f"mate {res.mate_in}" if res.mate_in is not None else f"cp {res.score}"
    print(f"bestmove {res.best_move.to_uci() if res.best_move else '(none)'}")
    print(f"score {score} depth {res.depth} nodes {res.nodes} time {res.time_ms} source {res.source}")
    print("pv " + " ".join(m.to_uci() for m in res.pv))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    cfg = load_config(args.config)
    if args.log_level:
        cfg.log_level = args.log_level.upper()
    # UCI owns stdout; keep logs on stderr
    logging.basicConfig(level=cfg.log_level, stream=sys.stderr)

    try:
        if args.command == "serve":
            return _cmd_serve(cfg, args)
        if args.command == "uci":
            run_uci(cfg)
            return 0
        if args.command == "perft":
            return _cmd_perft(cfg, args)
        return _cmd_search(cfg, args)
    except TaliaError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
