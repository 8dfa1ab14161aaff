"""Tests for mapping critical positions to puzzles."""

from __future__ import annotations

import chess

from blunderdrill.models import AnalysisResult, CriticalPosition
from blunderdrill.puzzles import to_puzzle, to_puzzles


def _position(**overrides) -> CriticalPosition:
    fields = dict(
        fen=chess.STARTING_FEN,
        best_move="e2e4",
        player_move="g1h3",
        eval_before=0.3,
        eval_after=-1.1,
        eval_delta=1.4,
        move_number=1,
        side="white",
        difficulty="hard",
        pattern="Positional Error",
        explanation="Control the centre.",
        opponent="Bob",
        played_as="white",
        date="Feb 20, 2026",
        clock_time=55.0,
        opponent_rating=1450,
        time_control="600+0",
        opening="Amar Opening",
        game_index=3,
    )
    fields.update(overrides)
    return CriticalPosition(**fields)


def test_puzzle_copies_every_field() -> None:
    pos = _position()
    puzzle = to_puzzle(pos, 7, now_ms=1700000000000)
    assert puzzle.id == "imported_7_1700000000000"
    assert puzzle.fen == pos.fen
    assert puzzle.best_move == "e2e4"
    assert puzzle.player_move == "g1h3"
    assert puzzle.difficulty == "hard"
    assert puzzle.opponent == "Bob"
    assert puzzle.opponent_rating == 1450
    assert puzzle.played_as == "white"
    assert puzzle.eval_delta == 1.4
    assert puzzle.opening == "Amar Opening"
    assert puzzle.date == "Feb 20, 2026"


def test_ids_are_unique_within_a_batch() -> None:
    puzzles = to_puzzles([_position(), _position(move_number=5), _position(move_number=9)])
    assert len({p.id for p in puzzles}) == 3
    assert puzzles[0].id.startswith("imported_0_")


def test_reinforcement_ids_do_not_collide() -> None:
    result = AnalysisResult(
        critical_positions=[_position()],
        best_moves_found=[_position(pattern="Best Move Found")],
    )
    ids = {p.id for p in result.puzzles()} | {p.id for p in result.reinforcement_puzzles()}
    assert len(ids) == 2


def test_to_dict_is_json_ready() -> None:
    data = to_puzzle(_position(), 0, now_ms=1).to_dict()
    assert data["id"] == "imported_0_1"
    assert data["time_control"] == "600+0"
