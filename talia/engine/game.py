from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import List

from .board import BB, BN, BP, BQ, BR, WB, WN, WP, WQ, WR, Board, UndoRecord
from .errors import TaliaError
from .move import Move, parse_uci
from .movegen import has_legal_moves, legal_moves

_DARK_SQUARES = 0xAA55AA55AA55AA55

CHECKMATE = "checkmate"
STALEMATE = "stalemate"
DRAW = "draw"
CHECK = "check"
ONGOING = "ongoing"


@dataclass
class Game:
    """A board plus the moves that led to it.

    Moves go through :meth:`Board.play`, so only legal moves enter the
    stack. Position hashes are counted for threefold repetition, and the
    stacked hashes feed the search as game history.
    """

    board: Board
    move_stack: List[UndoRecord] = field(default_factory=list)
    seen: Counter = field(default_factory=Counter)

    def __post_init__(self) -> None:
        self.seen[self.board.zobrist_hash] += 1

    @classmethod
    def new(cls) -> "Game":
        return cls(board=Board.startpos())

    @classmethod
    def from_fen(cls, fen: str) -> "Game":
        """Start a game from ``fen``.

        Raises:
            ParseError: If the FEN is malformed or the position is not playable.
        """
        board = Board.from_fen(fen)
        board.validate()
        return cls(board=board)

    def to_fen(self) -> str:
        return self.board.to_fen()

    def legal_moves(self) -> List[Move]:
        return legal_moves(self.board)

    def apply_move(self, move: Move) -> Move:
        """Play ``move`` and return it as generated, flags included.

        Raises:
            IllegalMoveError: If ``move`` is not legal; the game is unchanged.
        """
        record = self.board.play(move)
        self.move_stack.append(record)
        self.seen[self.board.zobrist_hash] += 1
        return record.move

    def apply_uci(self, uci: str) -> Move:
        return self.apply_move(parse_uci(uci))

    def undo_move(self) -> Move:
        if not self.move_stack:
            raise TaliaError("no moves to undo")
        self.seen[self.board.zobrist_hash] -= 1
        # drop zero counts
        self.seen += Counter()
        record = self.move_stack.pop()
        self.board.undo(record)
        return record.move

    def history_hashes(self) -> List[int]:
        """Hashes of all positions before the current one, oldest first."""
        return [r.zobrist_hash for r in self.move_stack]

    def move_history_uci(self) -> List[str]:
        return [r.move.to_uci() for r in self.move_stack]

    # --- Status ---
    def in_check(self) -> bool:
        return self.board.in_check()

    def checkmate(self) -> bool:
        return self.board.in_check() and not has_legal_moves(self.board)

    def stalemate(self) -> bool:
        return not self.board.in_check() and not has_legal_moves(self.board)

    def repetitions(self) -> int:
        """How often the current position has occurred in this game."""
        return self.seen[self.board.zobrist_hash]

    def insufficient_material(self) -> bool:
        bb = self.board.bb
        if bb[WP] | bb[BP] | bb[WR] | bb[BR] | bb[WQ] | bb[BQ]:
            return False
        minors = bb[WN] | bb[BN] | bb[WB] | bb[BB]
        if minors.bit_count() <= 1:
            return True
        # Bishops only, all on one square colour
        if bb[WN] | bb[BN]:
            return False
        bishops = bb[WB] | bb[BB]
        return not (bishops & _DARK_SQUARES) or not (bishops & ~_DARK_SQUARES)

    def is_draw(self) -> bool:
        """Fifty-move rule, stalemate, dead position or threefold repetition."""
        return (
            self.board.halfmove_clock >= 100
            or self.repetitions() >= 3
            or self.insufficient_material()
            or self.stalemate()
        )

    def status(self) -> str:
        """One of ``checkmate``, ``stalemate``, ``draw``, ``check`` or ``ongoing``."""
        in_check = self.board.in_check()
        if not has_legal_moves(self.board):
            return CHECKMATE if in_check else STALEMATE
        if self.is_draw():
            return DRAW
        return CHECK if in_check else ONGOING
