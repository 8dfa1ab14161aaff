"""UCI coordinate-move codec and legality checks on top of python-chess."""

from __future__ import annotations

from typing import NamedTuple

import chess

from .errors import IllegalPositionOrMove
from .models import Side


class UciMove(NamedTuple):
    from_square: str
    to_square: str
    promotion: str | None = None


def parse_uci(uci: str) -> UciMove:
    """Split ``"e7e8q"`` into ``UciMove("e7", "e8", "q")``."""
    if len(uci) not in (4, 5):
        raise IllegalPositionOrMove(f"Not a coordinate move: {uci!r}")
    return UciMove(uci[0:2], uci[2:4], uci[4] if len(uci) == 5 else None)


def to_uci(from_square: str, to_square: str, promotion: str | None = None) -> str:
    return f"{from_square}{to_square}{promotion or ''}"


def side_to_move(fen: str) -> Side:
    return "black" if fen.split(" ")[1] == "b" else "white"


def validate_fen(fen: str) -> chess.Board:
    """Return a board for *fen*, raising if the position is not legal."""
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise IllegalPositionOrMove(f"Malformed FEN {fen!r}: {exc}") from exc
    if not board.is_valid():
        raise IllegalPositionOrMove(f"Invalid position: {fen}")
    return board


def require_legal_move(fen: str, uci: str | None) -> chess.Move:
    """Return the parsed move, raising unless it is legal in *fen*."""
    board = validate_fen(fen)
    if not uci:
        raise IllegalPositionOrMove(f"No move given for {fen}")
    try:
        move = chess.Move.from_uci(uci)
    except ValueError as exc:
        raise IllegalPositionOrMove(f"Malformed move {uci!r}") from exc
    if move not in board.legal_moves:
        raise IllegalPositionOrMove(f"{uci} is not legal in {fen}")
    return move


def is_legal_move(fen: str, uci: str | None) -> bool:
    try:
        require_legal_move(fen, uci)
    except IllegalPositionOrMove:
        return False
    return True
