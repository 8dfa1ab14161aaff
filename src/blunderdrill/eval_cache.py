"""Per-run memo of engine evaluations.

Keyed on the exact FEN string.  Evaluations are stored from White's
perspective, so a cached entry serves whichever side later looks at it.
The cache lives for exactly one analysis run and is never persisted; there
is no eviction because one run only touches a few hundred positions per
game.
"""

from __future__ import annotations

from typing import Protocol

from .models import PositionEvaluation


class Evaluator(Protocol):
    async def analyze_position(self, fen: str, depth: int) -> PositionEvaluation: ...


class EvalCache:
    """In-memory ``fen -> PositionEvaluation`` map in front of an evaluator."""

    def __init__(self, evaluator: Evaluator, depth: int) -> None:
        self._evaluator = evaluator
        self._depth = depth
        self._entries: dict[str, PositionEvaluation] = {}
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, fen: str) -> PositionEvaluation | None:
        """Return the cached evaluation or None; never calls the engine."""
        return self._entries.get(fen)

    async def get_or_compute(self, fen: str) -> PositionEvaluation:
        """Return the cached evaluation, evaluating *fen* on a miss."""
        cached = self._entries.get(fen)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        result = await self._evaluator.analyze_position(fen, self._depth)
        self._entries[fen] = result
        return result

    def stats(self) -> dict:
        """Return basic cache statistics."""
        return {"positions": len(self._entries), "hits": self.hits, "misses": self.misses}

    def __contains__(self, fen: object) -> bool:
        return fen in self._entries

    def __len__(self) -> int:
        return len(self._entries)
