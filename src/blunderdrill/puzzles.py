"""Map critical positions onto the external Puzzle record."""

from __future__ import annotations

import time
from typing import Iterable

from .models import CriticalPosition, Puzzle


def to_puzzle(pos: CriticalPosition, index: int, now_ms: int | None = None) -> Puzzle:
    """Copy *pos* into a Puzzle with an id unique within one run.

    No validation happens here: legality was established before *pos* was
    created.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return Puzzle(
        id=f"imported_{index}_{stamp}",
        fen=pos.fen,
        best_move=pos.best_move,
        explanation=pos.explanation,
        pattern=pos.pattern,
        difficulty=pos.difficulty,
        opponent=pos.opponent,
        date=pos.date,
        player_move=pos.player_move,
        opponent_rating=pos.opponent_rating,
        time_control=pos.time_control,
        played_as=pos.played_as,
        eval_delta=pos.eval_delta,
        eval_before=pos.eval_before,
        eval_after=pos.eval_after,
        opening=pos.opening,
    )


def to_puzzles(positions: Iterable[CriticalPosition], start: int = 0) -> list[Puzzle]:
    now_ms = int(time.time() * 1000)
    return [to_puzzle(pos, i, now_ms) for i, pos in enumerate(positions, start=start)]
