from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

from .attacks import (
    KING_ATTACKS,
    KNIGHT_ATTACKS,
    PAWN_ATTACKS,
    bishop_attacks,
    flip_vertical,
    lsb_index,
    rook_attacks,
)
from .errors import IllegalMoveError, ParseError
from .move import Move, square_to_str, str_to_square
from .zobrist import CASTLING_ORDER, ZOBRIST, compute_hash_from_scratch


STARTPOS_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


class PieceKind(IntEnum):
    PAWN = 0
    KNIGHT = 1
    BISHOP = 2
    ROOK = 3
    QUEEN = 4
    KING = 5


# Piece indices for bitboards: colour * 6 + kind
WP, WN, WB, WR, WQ, WK, BP, BN, BB, BR, BQ, BK = range(12)
PIECE_ORDER = [WP, WN, WB, WR, WQ, WK, BP, BN, BB, BR, BQ, BK]
PIECE_TO_CHAR = {
    WP: "P",
    WN: "N",
    WB: "B",
    WR: "R",
    WQ: "Q",
    WK: "K",
    BP: "p",
    BN: "n",
    BB: "b",
    BR: "r",
    BQ: "q",
    BK: "k",
}
CHAR_TO_PIECE = {v: k for k, v in PIECE_TO_CHAR.items()}
EMPTY_RUN_DIGITS = "12345678"

PROMOTION_KINDS: Dict[str, PieceKind] = {
    "q": PieceKind.QUEEN,
    "r": PieceKind.ROOK,
    "b": PieceKind.BISHOP,
    "n": PieceKind.KNIGHT,
}

# King destination -> (rook origin, rook destination)
CASTLING_ROOK_MOVES: Dict[int, Tuple[int, int]] = {
    6: (7, 5),
    2: (0, 3),
    62: (63, 61),
    58: (56, 59),
}
# Rights lost when a piece leaves or is captured on these squares
_CASTLING_LOSS = {4: "KQ", 0: "Q", 7: "K", 60: "kq", 56: "q", 63: "k"}

BACK_RANKS = 0xFF000000000000FF


def piece_index(white: bool, kind: PieceKind) -> int:
    return int(kind) if white else int(kind) + 6


def piece_kind(piece: int) -> PieceKind:
    return PieceKind(piece % 6)


def piece_is_white(piece: int) -> bool:
    return piece < 6


@dataclass(frozen=True)
class UndoRecord:
    """State needed to reverse one :meth:`Board.apply`.

    Owned by the caller between the apply and its matching undo.
    """

    move: Move
    moved_piece: int
    captured_piece: Optional[int]
    captured_sq: Optional[int]
    castling: str
    ep_square: Optional[int]
    halfmove_clock: int
    fullmove_number: int
    zobrist_hash: int


@dataclass
class Board:
    """Board state with bitboards, FEN I/O and make/unmake.

    Notes:
    - Squares are 0..63 (a1=0 .. h8=63), rank-major from white's perspective.
    - ``apply``/``undo`` mutate in place; clone with :meth:`copy` before
      handing a board to another thread.
    """

    # 12 piece bitboards, indexed by constants above
    bb: List[int]
    side_to_move: str  # 'w' or 'b'
    castling: str  # subset of 'KQkq' in that order, or ''
    ep_square: Optional[int]
    halfmove_clock: int
    fullmove_number: int
    # incremental zobrist hash of current position
    zobrist_hash: Optional[int] = None

    def __post_init__(self) -> None:
        if self.zobrist_hash is None:
            self.zobrist_hash = compute_hash_from_scratch(self)

    @classmethod
    def startpos(cls) -> "Board":
        """Create a board initialized to the standard chess starting position."""
        return cls.from_fen(STARTPOS_FEN)

    @classmethod
    def empty(cls) -> "Board":
        """Create a board with no pieces, white to move and no rights."""
        return cls(
            bb=[0] * 12,
            side_to_move="w",
            castling="",
            ep_square=None,
            halfmove_clock=0,
            fullmove_number=1,
        )

    @classmethod
    def from_fen(cls, fen: str) -> "Board":
        """Create a board from a Forsyth–Edwards Notation (FEN) string.

        Args:
            fen (str): FEN string. The two move counters may be omitted, in
                which case they default to ``0 1``.

        Returns:
            Board: Board instance initialized with state encoded in ``fen``.

        Raises:
            ParseError: If ``fen`` is empty, has the wrong number of fields, or
                contains invalid piece placement, side to move, castling
                rights, en passant square, or move counters.

        Notes:
            The parser normalizes castling rights ordering and converts the
            en-passant target to a square index.
        """
        if not fen or not isinstance(fen, str):
            raise ParseError("FEN must be a non-empty string")
        parts = fen.strip().split()
        if len(parts) == 4:
            parts += ["0", "1"]
        if len(parts) != 6:
            raise ParseError("FEN must have 6 fields")
        placement, stm, castling, ep, halfmove, fullmove = parts

        ranks = placement.split("/")
        if len(ranks) != 8:
            raise ParseError("FEN board must have 8 ranks")
        bb = [0] * 12
        for rank_idx, rank in enumerate(ranks[::-1]):  # start from rank 1 (bottom)
            file_idx = 0
            prev_empty = False
            for ch in rank:
                if ch in EMPTY_RUN_DIGITS:
                    if prev_empty:
                        raise ParseError("adjacent empty counts in FEN rank")
                    file_idx += int(ch)
                    prev_empty = True
                else:
                    prev_empty = False
                    if ch not in CHAR_TO_PIECE:
                        raise ParseError(f"invalid piece in FEN: {ch!r}")
                    if file_idx >= 8:
                        raise ParseError("too many squares in FEN rank")
                    bb[CHAR_TO_PIECE[ch]] |= 1 << (rank_idx * 8 + file_idx)
                    file_idx += 1
            if file_idx != 8:
                raise ParseError("rank does not sum to 8 squares in FEN")

        if stm not in ("w", "b"):
            raise ParseError("side to move must be 'w' or 'b'")

        if castling != "-":
            if any(ch not in CASTLING_ORDER for ch in castling) or len(set(castling)) != len(
                castling
            ):
                raise ParseError("invalid castling rights")
            castling = "".join(c for c in CASTLING_ORDER if c in castling)
        else:
            castling = ""

        ep_square: Optional[int]
        if ep == "-":
            ep_square = None
        else:
            try:
                ep_square = str_to_square(ep)
            except ParseError as e:
                raise ParseError("invalid en passant square") from e
            # Target lies behind a pawn that just double-pushed
            if ep_square // 8 != (5 if stm == "w" else 2):
                raise ParseError("invalid en passant square rank")

        # Plain ASCII digits only; int() would also take "١" or "+3"
        if not all(c.isascii() and c.isdigit() for c in (halfmove, fullmove)):
            raise ParseError("invalid move counters in FEN")
        halfmove_clock = int(halfmove)
        fullmove_number = int(fullmove)
        if fullmove_number <= 0:
            raise ParseError("invalid move counters in FEN")

        return cls(
            bb=bb,
            side_to_move=stm,
            castling=castling,
            ep_square=ep_square,
            halfmove_clock=halfmove_clock,
            fullmove_number=fullmove_number,
        )

    def to_fen(self) -> str:
        """Serialize the current position into a normalized FEN string."""
        return f"{self.placement_fen()} {self.side_to_move} {self.castling or '-'} " + (
            f"{square_to_str(self.ep_square) if self.ep_square is not None else '-'} "
            f"{self.halfmove_clock} {self.fullmove_number}"
        )

    def placement_fen(self) -> str:
        ranks_str: List[str] = []
        for rank_idx in range(7, -1, -1):  # 7..0 maps to ranks 8..1
            run = 0
            row = []
            for file_idx in range(8):
                p = self.piece_at(rank_idx * 8 + file_idx)
                if p is None:
                    run += 1
                else:
                    if run > 0:
                        row.append(str(run))
                        run = 0
                    row.append(PIECE_TO_CHAR[p])
            if run > 0:
                row.append(str(run))
            ranks_str.append("".join(row))
        return "/".join(ranks_str)

    def position_key(self) -> str:
        """FEN without the move counters; identifies a position for caching."""
        return " ".join(self.to_fen().split()[:4])

    def copy(self) -> "Board":
        return Board(
            bb=list(self.bb),
            side_to_move=self.side_to_move,
            castling=self.castling,
            ep_square=self.ep_square,
            halfmove_clock=self.halfmove_clock,
            fullmove_number=self.fullmove_number,
            zobrist_hash=self.zobrist_hash,
        )

    def mirror(self) -> "Board":
        """Return the colour-swapped, rank-flipped position.

        Side to move, castling rights and the en-passant target are mirrored
        along with the pieces, so the result is the same position seen from
        the other side of the board.
        """
        bb = [0] * 12
        for p in range(12):
            bb[(p + 6) % 12] = flip_vertical(self.bb[p])
        return Board(
            bb=bb,
            side_to_move="b" if self.side_to_move == "w" else "w",
            castling="".join(c for c in CASTLING_ORDER if c.swapcase() in self.castling),
            ep_square=(self.ep_square ^ 56) if self.ep_square is not None else None,
            halfmove_clock=self.halfmove_clock,
            fullmove_number=self.fullmove_number,
        )

    # --- Queries ---
    def piece_at(self, sq: int) -> Optional[int]:
        bit = 1 << sq
        for p in PIECE_ORDER:
            if self.bb[p] & bit:
                return p
        return None

    def occupancy(self) -> int:
        occ = 0
        for b in self.bb:
            occ |= b
        return occ

    def color_occupancy(self, white: bool) -> int:
        bb = self.bb
        if white:
            return bb[WP] | bb[WN] | bb[WB] | bb[WR] | bb[WQ] | bb[WK]
        return bb[BP] | bb[BN] | bb[BB] | bb[BR] | bb[BQ] | bb[BK]

    def piece_count(self) -> int:
        return self.occupancy().bit_count()

    def king_square(self, white: bool) -> Optional[int]:
        kbb = self.bb[WK] if white else self.bb[BK]
        return lsb_index(kbb) if kbb else None

    # --- Placement helpers (position setup, not search) ---
    def put_piece(self, sq: int, piece: int) -> None:
        """Place ``piece`` on ``sq``, replacing whatever stood there."""
        self.remove_piece(sq)
        self.bb[piece] |= 1 << sq
        self.zobrist_hash ^= ZOBRIST.piece_square[piece][sq]

    def remove_piece(self, sq: int) -> Optional[int]:
        p = self.piece_at(sq)
        if p is not None:
            self.bb[p] &= ~(1 << sq)
            self.zobrist_hash ^= ZOBRIST.piece_square[p][sq]
        return p

    # --- Attacks ---
    def is_square_attacked(self, sq: int, by_white: bool) -> bool:
        """Return True if square ``sq`` is attacked by the given side.

        Looks outward from ``sq`` with each piece type's attack pattern:
        pawns, knights and the king via fixed tables, sliders via rays cut
        at the first blocker.
        """
        bb = self.bb
        if by_white:
            # A white pawn attacks sq from where a black pawn on sq would attack
            if PAWN_ATTACKS[1][sq] & bb[WP]:
                return True
            if KNIGHT_ATTACKS[sq] & bb[WN] or KING_ATTACKS[sq] & bb[WK]:
                return True
            diag = bb[WB] | bb[WQ]
            ortho = bb[WR] | bb[WQ]
        else:
            if PAWN_ATTACKS[0][sq] & bb[BP]:
                return True
            if KNIGHT_ATTACKS[sq] & bb[BN] or KING_ATTACKS[sq] & bb[BK]:
                return True
            diag = bb[BB] | bb[BQ]
            ortho = bb[BR] | bb[BQ]
        if not (diag or ortho):
            return False
        occ = self.occupancy()
        if diag and bishop_attacks(sq, occ) & diag:
            return True
        if ortho and rook_attacks(sq, occ) & ortho:
            return True
        return False

    def in_check(self, side: Optional[str] = None) -> bool:
        """Return True if ``side`` (default: side to move) is in check."""
        s = self.side_to_move if side is None else side
        if s not in ("w", "b"):
            raise ValueError("side must be 'w' or 'b'")
        ksq = self.king_square(s == "w")
        if ksq is None:
            return False
        return self.is_square_attacked(ksq, by_white=(s == "b"))

    # --- Make / unmake ---
    def apply(self, move: Move) -> UndoRecord:
        """Apply ``move`` in place and return the record that reverses it.

        No legality check is done here; the move must come from the move
        generator (or be validated through :meth:`play`).

        Raises:
            IllegalMoveError: If the side to move has no piece on the origin.
        """
        from_sq, to_sq = move.from_sq, move.to_sq
        white = self.side_to_move == "w"
        bb = self.bb
        from_bit = 1 << from_sq
        base = 0 if white else 6

        moved = None
        for p in range(base, base + 6):
            if bb[p] & from_bit:
                moved = p
                break
        if moved is None:
            raise IllegalMoveError(move.to_uci(), self.to_fen())
        kind = moved - base

        captured: Optional[int] = None
        captured_sq: Optional[int] = None
        if kind == PieceKind.PAWN and to_sq == self.ep_square and (to_sq - from_sq) % 8 != 0:
            captured_sq = to_sq - 8 if white else to_sq + 8
            captured = BP if white else WP
        else:
            to_bit = 1 << to_sq
            opp = 6 - base
            for p in range(opp, opp + 6):
                if bb[p] & to_bit:
                    captured = p
                    captured_sq = to_sq
                    break

        record = UndoRecord(
            move=move,
            moved_piece=moved,
            captured_piece=captured,
            captured_sq=captured_sq,
            castling=self.castling,
            ep_square=self.ep_square,
            halfmove_clock=self.halfmove_clock,
            fullmove_number=self.fullmove_number,
            zobrist_hash=self.zobrist_hash,
        )

        keys = ZOBRIST.piece_square
        h = self.zobrist_hash
        if captured is not None:
            bb[captured] ^= 1 << captured_sq
            h ^= keys[captured][captured_sq]
        bb[moved] ^= from_bit
        h ^= keys[moved][from_sq]
        placed = base + PROMOTION_KINDS[move.promotion] if move.promotion else moved
        bb[placed] |= 1 << to_sq
        h ^= keys[placed][to_sq]
        if kind == PieceKind.KING and abs(to_sq - from_sq) == 2:
            rook_from, rook_to = CASTLING_ROOK_MOVES[to_sq]
            rook = base + PieceKind.ROOK
            bb[rook] ^= (1 << rook_from) | (1 << rook_to)
            h ^= keys[rook][rook_from] ^ keys[rook][rook_to]

        if self.ep_square is not None:
            h ^= ZOBRIST.ep_file[self.ep_square % 8]
            self.ep_square = None
        if kind == PieceKind.PAWN and abs(to_sq - from_sq) == 16:
            self.ep_square = (from_sq + to_sq) // 2
            h ^= ZOBRIST.ep_file[self.ep_square % 8]

        if self.castling:
            lost = _CASTLING_LOSS.get(from_sq, "") + _CASTLING_LOSS.get(to_sq, "")
            if lost:
                rights = "".join(c for c in self.castling if c not in lost)
                if rights != self.castling:
                    h ^= ZOBRIST.castling_keys[self.castling] ^ ZOBRIST.castling_keys[rights]
                    self.castling = rights

        if kind == PieceKind.PAWN or captured is not None:
            self.halfmove_clock = 0
        else:
            self.halfmove_clock += 1
        if not white:
            self.fullmove_number += 1

        self.side_to_move = "b" if white else "w"
        self.zobrist_hash = h ^ ZOBRIST.side_to_move
        return record

    def undo(self, record: UndoRecord) -> None:
        """Reverse the :meth:`apply` that produced ``record``."""
        move = record.move
        bb = self.bb
        moved = record.moved_piece
        white = moved < 6
        base = 0 if white else 6

        placed = base + PROMOTION_KINDS[move.promotion] if move.promotion else moved
        bb[placed] ^= 1 << move.to_sq
        bb[moved] |= 1 << move.from_sq
        if moved - base == PieceKind.KING and abs(move.to_sq - move.from_sq) == 2:
            rook_from, rook_to = CASTLING_ROOK_MOVES[move.to_sq]
            bb[base + PieceKind.ROOK] ^= (1 << rook_from) | (1 << rook_to)
        if record.captured_piece is not None:
            bb[record.captured_piece] |= 1 << record.captured_sq

        self.side_to_move = "w" if white else "b"
        self.castling = record.castling
        self.ep_square = record.ep_square
        self.halfmove_clock = record.halfmove_clock
        self.fullmove_number = record.fullmove_number
        self.zobrist_hash = record.zobrist_hash

    def play(self, move: Move) -> UndoRecord:
        """Validate ``move`` against the legal move list, then apply it.

        The generated move (with its flags) is the one applied, so callers may
        pass a bare move parsed from UCI text.

        Raises:
            IllegalMoveError: If ``move`` is not legal here; the board is
                left unchanged.
        """
        from .movegen import legal_moves

        for m in legal_moves(self):
            if m == move:
                return self.apply(m)
        raise IllegalMoveError(move.to_uci(), self.to_fen())

    # --- Validation / rendering ---
    def validate(self) -> None:
        """Check the structural invariants a searchable position must hold.

        Raises:
            ParseError: If a side does not have exactly one king, piece sets
                overlap, pawns stand on a back rank, or the side that just
                moved is still in check.
        """
        seen = 0
        for b in self.bb:
            if seen & b:
                raise ParseError("piece bitboards overlap")
            seen |= b
        if self.bb[WK].bit_count() != 1 or self.bb[BK].bit_count() != 1:
            raise ParseError("each side must have exactly one king")
        if (self.bb[WP] | self.bb[BP]) & BACK_RANKS:
            raise ParseError("pawns cannot stand on the first or last rank")
        if self.in_check("b" if self.side_to_move == "w" else "w"):
            raise ParseError("side not to move is in check")

    def __str__(self) -> str:
        lines = []
        for rank_idx in range(7, -1, -1):
            row = []
            for file_idx in range(8):
                p = self.piece_at(rank_idx * 8 + file_idx)
                row.append(PIECE_TO_CHAR[p] if p is not None else ".")
            lines.append(f"{rank_idx + 1} " + " ".join(row))
        lines.append("  a b c d e f g h")
        lines.append(self.to_fen())
        return "\n".join(lines)
