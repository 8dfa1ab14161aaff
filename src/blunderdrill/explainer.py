"""Natural-language explanations for critical positions.

The pipeline never depends on an external text generator: the motif
detector's own explanation (or :func:`template_explanation`) is used whenever
no generator is registered, the generator fails, or it returns nothing.

:class:`AnthropicExplainer` is the bundled generator, built on the Claude
API client.  It needs ``ANTHROPIC_API_KEY``; the model can be overridden
with ``BLUNDERDRILL_EXPLAIN_MODEL``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

import anthropic

from .errors import ExplanationError
from .models import Side

_DEFAULT_MODEL = "claude-3-5-haiku-latest"
_MAX_TOKENS = 200


@dataclass(frozen=True)
class ExplanationRequest:
    fen: str
    best_move: str
    player_move: str
    eval_before: float
    eval_after: float
    side: Side
    move_number: int
    opponent: str
    pattern: str


class ExplanationGenerator(Protocol):
    def explain(self, request: ExplanationRequest) -> str: ...


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def template_explanation(
    eval_delta: float,
    eval_before: float,
    eval_after: float,
    side: Side,
    move_number: int,
    clock_time: float | None,
    opponent: str,
) -> str:
    who = "White" if side == "white" else "Black"
    text = (
        f"On move {move_number} vs {opponent}, {who} made an error costing "
        f"~{eval_delta:.1f} pawns (eval shifted from {_signed(eval_before)} "
        f"to {_signed(eval_after)})."
    )
    if clock_time is not None and clock_time < 30:
        text += (
            f" Only {clock_time:.0f}s on the clock, so time pressure "
            "likely played a role."
        )
    return text + " Find the best move that keeps the advantage."


def reinforcement_explanation(move_number: int, eval_after: float) -> str:
    return (
        f"Excellent! On move {move_number} you found the engine's top choice, "
        f"maintaining a {abs(eval_after):.1f}-pawn advantage."
    )


def _signed(value: float) -> str:
    return f"+{value:.1f}" if value >= 0 else f"{value:.1f}"


# ---------------------------------------------------------------------------
# Claude generator
# ---------------------------------------------------------------------------


class AnthropicExplainer:
    """Asks Claude for a short coaching explanation of one critical position."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 20.0,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        if client is None:
            key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not key:
                raise ExplanationError("ANTHROPIC_API_KEY is not set")
            client = anthropic.Anthropic(api_key=key, timeout=timeout, max_retries=1)
        self._client = client
        self._model = model or os.environ.get("BLUNDERDRILL_EXPLAIN_MODEL") or _DEFAULT_MODEL

    def explain(self, request: ExplanationRequest) -> str:
        try:
            message = self._client.messages.create(
                model=self._model,
                max_tokens=_MAX_TOKENS,
                messages=[{"role": "user", "content": build_prompt(request)}],
            )
        except anthropic.APIError as exc:
            raise ExplanationError(f"Claude API call failed: {exc}") from exc

        try:
            text = message.content[0].text
        except (IndexError, AttributeError) as exc:
            raise ExplanationError("unexpected Claude API response") from exc
        return text.strip()

    def close(self) -> None:
        self._client.close()


def build_prompt(req: ExplanationRequest) -> str:
    side_label = "White" if req.side == "white" else "Black"
    swing = abs(req.eval_after - req.eval_before)
    return (
        "You are a chess coach explaining a critical moment from a real game "
        "to an improving player (rated ~1000-1500).\n\n"
        f"Position (FEN): {req.fen}\n"
        f"It is {side_label}'s turn (move {req.move_number}), playing against {req.opponent}.\n"
        f"The player played: {req.player_move} (a {req.pattern.lower()})\n"
        f"The best move was: {req.best_move}\n"
        f"Evaluation shifted from {_signed(req.eval_before)} to {_signed(req.eval_after)} "
        f"({swing:.1f} pawn swing).\n\n"
        f"Write a 2-3 sentence explanation of why {req.best_move} is strong. "
        "Name the tactical or positional theme and the pieces and squares involved. "
        "Speak directly to the player, warm but concise.\n\n"
        "Do not mention the evaluation numbers. Do not start with \"The best move\"."
    )
