"""Critical-position classification.

All evaluations arriving here are in pawns from White's perspective.  The
eval delta is re-expressed for the side that moved, so a positive delta
always means the mover made their own position worse.

Rules
-----
* Mistake:        ``delta >= eval_threshold`` (default 1.0).
* Reinforcement:  ``delta <= -0.3`` and the player found the engine's best
                  move in a non-trivial position (``|eval_before| > 0.5``).
* Mistakes are checked first; a ply gets at most one verdict.
* Difficulty:     easy for outright blunders (>= 3.0), medium for >= 2.0 or
                  a nearly flagged clock (< 10 s), hard otherwise.
"""

from __future__ import annotations

import enum

from .models import Difficulty, Side

DEFAULT_EVAL_THRESHOLD = 1.0
DECIDED_THRESHOLD = 7.0
DEFAULT_SKIP_OPENING_MOVES = 8

_BLUNDER_DELTA = 3.0
_SERIOUS_DELTA = 2.0
_REINFORCEMENT_DELTA = -0.3
_REINFORCEMENT_MIN_EVAL = 0.5
_SCRAMBLE_CLOCK = 10.0
_TIME_PRESSURE_CLOCK = 30.0

# Motif themes that say nothing specific about the position.
_GENERIC_THEMES = frozenset({"positional", "tactic", "unknown"})


class Verdict(str, enum.Enum):
    MISTAKE = "mistake"
    REINFORCEMENT = "reinforcement"


def eval_delta_for_side(eval_before: float, eval_after: float, side: Side) -> float:
    """Pawns lost by *side* with its move (negative when it gained)."""
    if side == "white":
        return eval_before - eval_after
    return eval_after - eval_before


def classify_difficulty(delta: float, clock: float | None = None) -> Difficulty:
    if delta >= _BLUNDER_DELTA:
        return "easy"
    if delta >= _SERIOUS_DELTA or (clock is not None and clock < _SCRAMBLE_CLOCK):
        return "medium"
    return "hard"


def classify_pattern(delta: float, clock: float | None = None) -> str:
    """Descriptive fallback label used when no specific motif was found."""
    if clock is not None and clock < _TIME_PRESSURE_CLOCK:
        return "Time Pressure Blunder"
    if delta >= _BLUNDER_DELTA:
        return "Hanging Piece"
    if delta >= _SERIOUS_DELTA:
        return "Missed Tactic"
    return "Positional Error"


def choose_pattern(theme: str, delta: float, clock: float | None = None) -> str:
    if theme in _GENERIC_THEMES:
        return classify_pattern(delta, clock)
    return theme


def classify_ply(
    eval_before: float,
    eval_after: float,
    side: Side,
    best_move: str | None,
    player_move: str,
    eval_threshold: float = DEFAULT_EVAL_THRESHOLD,
) -> Verdict | None:
    delta = eval_delta_for_side(eval_before, eval_after, side)
    if delta >= eval_threshold:
        return Verdict.MISTAKE
    if (
        delta <= _REINFORCEMENT_DELTA
        and best_move is not None
        and player_move == best_move
        and abs(eval_before) > _REINFORCEMENT_MIN_EVAL
    ):
        return Verdict.REINFORCEMENT
    return None


def is_decided(evaluation: float, threshold: float = DECIDED_THRESHOLD) -> bool:
    """True when the game is already won or lost at this evaluation."""
    return abs(evaluation) > threshold


def is_blunder(delta: float) -> bool:
    return delta >= _SERIOUS_DELTA


def opening_skip_index(skip_opening_moves: int = DEFAULT_SKIP_OPENING_MOVES) -> int:
    """First half-move index eligible for classification."""
    return max(0, skip_opening_moves) * 2
