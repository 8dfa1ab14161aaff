"""Shared data-model types used across all modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Side = Literal["white", "black"]
Difficulty = Literal["easy", "medium", "hard"]


# ---------------------------------------------------------------------------
# Game records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlyRecord:
    """One half-move of a parsed game."""

    san: str                          # display only
    uci: str                          # coordinate move, e.g. "e7e8q"
    fen_before: str
    fen_after: str
    move_number: int                  # 1-based full-move number
    side: Side
    clock_after: float | None = None  # seconds left on the mover's clock
    time_spent: float | None = None   # seconds spent on this move


@dataclass(frozen=True)
class GameRecord:
    """A parsed game.  Built once by :mod:`blunderdrill.pgn`, never mutated."""

    headers: dict[str, str]
    plies: tuple[PlyRecord, ...]
    white: str = "Unknown"
    black: str = "Unknown"
    white_elo: int | None = None
    black_elo: int | None = None
    result: str = "*"
    opening: str | None = None
    time_control: str | None = None
    date: str | None = None           # raw PGN date, e.g. "2026.02.20"

    def side_of(self, username: str) -> Side | None:
        """Return which colour *username* played, matched case-insensitively."""
        name = username.lower()
        if self.white.lower() == name:
            return "white"
        if self.black.lower() == name:
            return "black"
        return None

    def opponent_of(self, side: Side) -> tuple[str, int | None]:
        """Return (name, rating) of the player opposing *side*."""
        if side == "white":
            return self.black, self.black_elo
        return self.white, self.white_elo


# ---------------------------------------------------------------------------
# Engine evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionEvaluation:
    """Engine result for one position.

    ``evaluation`` is in pawns and always from White's perspective, whoever
    is to move.  Forced mates saturate at ±99.
    """

    fen: str
    evaluation: float
    best_move: str | None
    depth: int

    def for_side(self, side: Side) -> float:
        """Evaluation from *side*'s perspective (positive = good for side)."""
        return self.evaluation if side == "white" else -self.evaluation


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TacticalAnalysis:
    theme: str
    clauses: tuple[str, ...]
    explanation: str
    pieces: tuple[str, ...]


@dataclass(frozen=True)
class CriticalPosition:
    """A ply flagged as a training-worthy mistake or reinforcement moment."""

    fen: str
    best_move: str
    player_move: str
    eval_before: float
    eval_after: float
    eval_delta: float                 # positive = the mover lost ground
    move_number: int
    side: Side
    difficulty: Difficulty
    pattern: str
    explanation: str
    opponent: str
    played_as: Side
    date: str = ""
    clock_time: float | None = None
    opponent_rating: int | None = None
    time_control: str | None = None
    opening: str | None = None
    game_index: int = 0


@dataclass
class Puzzle:
    """External-facing training position consumed by the presentation layer."""

    id: str
    fen: str
    best_move: str
    explanation: str
    pattern: str
    difficulty: Difficulty
    opponent: str
    date: str
    player_move: str | None = None
    opponent_rating: int | None = None
    time_control: str | None = None
    played_as: Side | None = None
    eval_delta: float | None = None
    eval_before: float | None = None
    eval_after: float | None = None
    opening: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalysisProgress:
    game_index: int
    total_games: int
    ply_index: int
    total_plies: int
    status: str


@dataclass(frozen=True)
class SkippedGame:
    game_index: int
    reason: str


@dataclass
class AnalysisResult:
    """Accumulated output of one analysis run."""

    critical_positions: list[CriticalPosition] = field(default_factory=list)
    best_moves_found: list[CriticalPosition] = field(default_factory=list)
    total_games_analyzed: int = 0
    blunders: int = 0
    mistakes: int = 0
    skipped_games: list[SkippedGame] = field(default_factory=list)

    def puzzles(self) -> list[Puzzle]:
        from .puzzles import to_puzzles

        return to_puzzles(self.critical_positions)

    def reinforcement_puzzles(self) -> list[Puzzle]:
        from .puzzles import to_puzzles

        return to_puzzles(self.best_moves_found, start=len(self.critical_positions))
