from __future__ import annotations

from typing import Optional


class TaliaError(Exception):
    """Base class for errors raised by the engine core."""


class ParseError(TaliaError, ValueError):
    """Malformed FEN or move text. The target position is left unchanged."""


class IllegalMoveError(TaliaError, ValueError):
    """A move that is not in the legal move list of the current position.

    Attributes:
        move (str): The rejected move in UCI notation.
        fen (Optional[str]): Position the move was tried in, if known.
    """

    def __init__(self, move: str, fen: Optional[str] = None) -> None:
        self.move = move
        self.fen = fen
        msg = f"illegal move: {move}"
        if fen is not None:
            msg += f" in {fen}"
        super().__init__(msg)
