"""Turn raw PGN text into :class:`~blunderdrill.models.GameRecord` objects.

python-chess does the heavy lifting (SAN parsing, legal-move replay,
``[%clk]`` comments).  This module only flattens each game's main line into
per-ply records carrying FEN before/after, the UCI move, the mover and the
clock.
"""

from __future__ import annotations

import io
import sys
from datetime import date

import chess
import chess.pgn

from .errors import ParseFailure
from .models import GameRecord, PlyRecord


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def read_games(pgn_text: str) -> list[chess.pgn.Game]:
    """Read every game of a multi-game PGN text, in file order.

    Games python-chess reads with errors are kept; :func:`load_game` turns
    them into :class:`ParseFailure` so the caller can skip them one by one.
    """
    buf = io.StringIO(pgn_text)
    games: list[chess.pgn.Game] = []
    while True:
        try:
            game = chess.pgn.read_game(buf)
        except Exception as exc:  # noqa: BLE001
            print(f"[pgn] Unreadable game skipped: {exc}", file=sys.stderr, flush=True)
            continue
        if game is None:
            break
        games.append(game)
    return games


def load_game(source: str | chess.pgn.Game) -> GameRecord:
    """Build a GameRecord from PGN text or an already-read game.

    Raises :class:`ParseFailure` when that is impossible.
    """
    if isinstance(source, chess.pgn.Game):
        game = source
    else:
        game = _read_one(source)

    if game.errors:
        raise ParseFailure(f"PGN error: {game.errors[0]}")

    plies = _flatten(game)
    if not plies:
        raise ParseFailure("game has no moves")

    headers = dict(game.headers)
    return GameRecord(
        headers=headers,
        plies=tuple(plies),
        white=headers.get("White") or "Unknown",
        black=headers.get("Black") or "Unknown",
        white_elo=_int_or_none(headers.get("WhiteElo")),
        black_elo=_int_or_none(headers.get("BlackElo")),
        result=headers.get("Result", "*"),
        opening=_opening_name(headers),
        time_control=headers.get("TimeControl") or None,
        date=headers.get("Date") or None,
    )


def parse_game(source: str | chess.pgn.Game) -> GameRecord | None:
    """Like :func:`load_game` but returns None for unparseable input."""
    try:
        return load_game(source)
    except ParseFailure:
        return None


def format_pgn_date(pgn_date: str) -> str:
    """Format ``"2026.02.20"`` as ``"Feb 20, 2026"``; unknown dates pass through."""
    try:
        year, month, day = (int(p) for p in pgn_date.split("."))
        d = date(year, month, day)
    except ValueError:
        return pgn_date
    return f"{d:%b} {d.day}, {d.year}"


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _read_one(pgn_text: str) -> chess.pgn.Game:
    if not pgn_text or not pgn_text.strip():
        raise ParseFailure("empty game text")
    try:
        game = chess.pgn.read_game(io.StringIO(pgn_text))
    except Exception as exc:  # noqa: BLE001
        raise ParseFailure(f"unreadable PGN: {exc}") from exc
    if game is None:
        raise ParseFailure("no game found in text")
    return game


def _flatten(game: chess.pgn.Game) -> list[PlyRecord]:
    board = game.board()
    last_clock: dict[chess.Color, float] = {}
    plies: list[PlyRecord] = []

    for node in game.mainline():
        move = node.move
        mover = board.turn
        fen_before = board.fen()
        san = board.san(move)
        move_number = board.fullmove_number
        board.push(move)

        clock = node.clock()
        spent = None
        if clock is not None and mover in last_clock:
            spent = max(0.0, last_clock[mover] - clock)
        if clock is not None:
            last_clock[mover] = clock

        plies.append(
            PlyRecord(
                san=san,
                uci=move.uci(),
                fen_before=fen_before,
                fen_after=board.fen(),
                move_number=move_number,
                side="white" if mover == chess.WHITE else "black",
                clock_after=clock,
                time_spent=spent,
            )
        )
    return plies


def _opening_name(headers: dict[str, str]) -> str | None:
    """``Opening`` header, else the last path segment of chess.com's ECOUrl."""
    if headers.get("Opening"):
        return headers["Opening"]
    eco_url = headers.get("ECOUrl", "")
    if eco_url:
        slug = eco_url.rstrip("/").rsplit("/", 1)[-1]
        return slug.replace("-", " ") or None
    return None


def _int_or_none(value: str | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None
