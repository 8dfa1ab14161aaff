"""Puzzle export: JSON for the training front end, annotated PGN for GUIs.

PGN format per puzzle
---------------------
Each puzzle is a separate game starting from the puzzle position:

  [standard headers, FEN / SetUp]
  [Annotator "blunderdrill"]

  { Game-level comment: pattern, difficulty, eval swing }

  <player move> $2 / $4        (mistake ``?`` or blunder ``??``)
  ( <best move> $1 { explanation } )

  *

When the player found the best move (reinforcement puzzles) the best move is
the main line, marked ``!``, and no variation is added.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

import chess
import chess.pgn

from .models import Puzzle

_NAG_MISTAKE = chess.pgn.NAG_MISTAKE        # $2  (?)
_NAG_BLUNDER = chess.pgn.NAG_BLUNDER        # $4  (??)
_NAG_GOOD = chess.pgn.NAG_GOOD_MOVE         # $1  (!)

_BLUNDER_DELTA = 2.0


def export_json(puzzles: Sequence[Puzzle], out_path: Path) -> None:
    """Write *puzzles* to *out_path* as a JSON array."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as fh:
        json.dump([p.to_dict() for p in puzzles], fh, indent=2)
        fh.write("\n")


def export_pgn(puzzles: Sequence[Puzzle], out_path: Path) -> None:
    """Write all puzzles to *out_path* as a multi-game PGN."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as fh:
        exporter = chess.pgn.FileExporter(fh)
        for rank, puzzle in enumerate(puzzles, start=1):
            _build_game(puzzle, rank).accept(exporter)
            fh.write("\n")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _build_game(puzzle: Puzzle, rank: int) -> chess.pgn.Game:
    board = chess.Board(puzzle.fen)
    game = chess.pgn.Game()

    game.headers["Event"] = "Blunderdrill Puzzles"
    game.headers["Site"] = puzzle.id
    game.headers["Date"] = "????.??.??"
    game.headers["Round"] = str(rank)
    game.headers["Result"] = "*"
    game.headers["Annotator"] = "blunderdrill"
    _set_player_headers(game, puzzle)
    if puzzle.opening:
        game.headers["Opening"] = puzzle.opening
    if puzzle.time_control:
        game.headers["TimeControl"] = puzzle.time_control

    game.setup(board)
    game.comment = _summary(puzzle)

    best = chess.Move.from_uci(puzzle.best_move)
    played = _played_move(board, puzzle)

    if played is None or played == best:
        node = game.add_variation(best)
        node.nags.add(_NAG_GOOD)
        node.comment = puzzle.explanation
        return game

    node = game.add_variation(played)
    is_blunder = puzzle.eval_delta is not None and puzzle.eval_delta >= _BLUNDER_DELTA
    node.nags.add(_NAG_BLUNDER if is_blunder else _NAG_MISTAKE)

    alt = game.add_variation(best)
    alt.nags.add(_NAG_GOOD)
    alt.comment = puzzle.explanation
    return game


def _played_move(board: chess.Board, puzzle: Puzzle) -> chess.Move | None:
    if not puzzle.player_move:
        return None
    move = chess.Move.from_uci(puzzle.player_move)
    return move if move in board.legal_moves else None


def _set_player_headers(game: chess.pgn.Game, puzzle: Puzzle) -> None:
    white_label, black_label = "?", "?"
    if puzzle.played_as == "white":
        white_label, black_label = "You", puzzle.opponent
    elif puzzle.played_as == "black":
        white_label, black_label = puzzle.opponent, "You"

    game.headers["White"] = white_label
    game.headers["Black"] = black_label
    if puzzle.opponent_rating is not None:
        key = "BlackElo" if puzzle.played_as == "white" else "WhiteElo"
        game.headers[key] = str(puzzle.opponent_rating)


def _summary(puzzle: Puzzle) -> str:
    parts = [puzzle.pattern, f"difficulty={puzzle.difficulty}"]
    if puzzle.eval_before is not None and puzzle.eval_after is not None:
        parts.append(f"eval {puzzle.eval_before:+.1f} -> {puzzle.eval_after:+.1f}")
    if puzzle.date:
        parts.append(f"vs {puzzle.opponent}, {puzzle.date}")
    return " | ".join(parts)
