from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntFlag
from typing import Optional

from .errors import ParseError


FILES = "abcdefgh"
RANKS = "12345678"
PROMOTION_PIECES = ("q", "r", "b", "n")


class MoveFlag(IntFlag):
    """Descriptive move flags filled in by the move generator."""

    NONE = 0
    CAPTURE = 1
    EN_PASSANT = 2
    CASTLE = 4
    DOUBLE_PUSH = 8
    PROMOTION = 16


@dataclass(frozen=True)
class Move:
    """A move between two squares, a1=0 .. h8=63.

    Attributes:
        from_sq (int): Square the piece leaves.
        to_sq (int): Square the piece lands on.
        promotion (Optional[str]): Promotion piece letter (``q r b n``), if any.
        flags (MoveFlag): Capture/en-passant/castle/double-push markers. Not
            part of the move's identity, so a move parsed from UCI text equals
            the generated move with the same squares and promotion.
    """

    from_sq: int
    to_sq: int
    promotion: Optional[str] = None
    flags: MoveFlag = field(default=MoveFlag.NONE, compare=False)

    @property
    def is_capture(self) -> bool:
        return bool(self.flags & (MoveFlag.CAPTURE | MoveFlag.EN_PASSANT))

    def to_uci(self) -> str:
        return f"{square_to_str(self.from_sq)}{square_to_str(self.to_sq)}{self.promotion or ''}"

    def __str__(self) -> str:
        return self.to_uci()


def parse_uci(uci: str) -> Move:
    """Read a move in long algebraic notation (``e2e4``, ``e7e8q``).

    The result carries no flags; match it against the generated moves to
    pick them up.

    Raises:
        ParseError: For a wrong length, a bad square or a promotion letter
            outside ``qrbn``.
    """
    text = uci.strip()
    if len(text) not in (4, 5):
        raise ParseError(f"invalid UCI move length: {uci!r}")
    promotion: Optional[str] = text[4].lower() if len(text) == 5 else None
    if promotion is not None and promotion not in PROMOTION_PIECES:
        raise ParseError(f"invalid promotion piece: {promotion!r}")
    return Move(str_to_square(text[:2]), str_to_square(text[2:4]), promotion)


def str_to_square(name: str) -> int:
    """Square index for a name such as ``"e4"``.

    Raises:
        ParseError: If ``name`` is not a board square.
    """
    if len(name) != 2 or name[0] not in FILES or name[1] not in RANKS:
        raise ParseError(f"invalid square: {name!r}")
    return RANKS.index(name[1]) * 8 + FILES.index(name[0])


def square_to_str(sq: int) -> str:
    if not 0 <= sq < 64:
        raise ValueError(f"invalid square index: {sq}")
    return FILES[sq % 8] + RANKS[sq // 8]
