"""Tests for explanation text (the Claude client is mocked)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

from blunderdrill.errors import ExplanationError
from blunderdrill.explainer import (
    AnthropicExplainer,
    ExplanationRequest,
    build_prompt,
    reinforcement_explanation,
    template_explanation,
)


def _request() -> ExplanationRequest:
    return ExplanationRequest(
        fen="4k3/8/8/3n4/8/2N5/8/4K3 w - - 0 1",
        best_move="c3d5",
        player_move="e1d2",
        eval_before=3.1,
        eval_after=0.1,
        side="white",
        move_number=23,
        opponent="Bob",
        pattern="hanging piece",
    )


def _client_returning(*texts: str) -> MagicMock:
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text=t) for t in texts]
    )
    return client


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def test_template_mentions_move_and_swing() -> None:
    text = template_explanation(2.3, 1.0, -1.3, "white", 17, None, "Bob")
    assert text.startswith("On move 17 vs Bob, White made an error costing ~2.3 pawns")
    assert "from +1.0 to -1.3" in text
    assert "time pressure" not in text


def test_template_mentions_time_pressure() -> None:
    text = template_explanation(1.5, -0.5, 1.0, "black", 30, 12.0, "Ann")
    assert "Black" in text
    assert "Only 12s on the clock" in text


def test_reinforcement_text() -> None:
    text = reinforcement_explanation(14, -2.5)
    assert "move 14" in text
    assert "2.5-pawn advantage" in text


# ---------------------------------------------------------------------------
# Claude client
# ---------------------------------------------------------------------------


def test_missing_api_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ExplanationError, match="ANTHROPIC_API_KEY"):
        AnthropicExplainer()


def test_client_built_from_env_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    with patch("blunderdrill.explainer.anthropic.Anthropic") as ctor:
        AnthropicExplainer(timeout=5.0)
    assert ctor.call_args.kwargs["api_key"] == "sk-test"
    assert ctor.call_args.kwargs["timeout"] == 5.0


def test_explain_returns_text(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BLUNDERDRILL_EXPLAIN_MODEL", raising=False)
    client = _client_returning("  Take the knight!  ")
    explainer = AnthropicExplainer(client=client)

    assert explainer.explain(_request()) == "Take the knight!"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["max_tokens"] == 200
    assert kwargs["model"] == "claude-3-5-haiku-latest"
    assert "c3d5" in kwargs["messages"][0]["content"]


def test_model_override_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLUNDERDRILL_EXPLAIN_MODEL", "some-model")
    client = _client_returning("ok")
    AnthropicExplainer(client=client).explain(_request())
    assert client.messages.create.call_args.kwargs["model"] == "some-model"


def test_api_error_raises() -> None:
    client = MagicMock()
    client.messages.create.side_effect = anthropic.APIConnectionError(
        request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    )
    with pytest.raises(ExplanationError, match="Claude API call failed"):
        AnthropicExplainer(client=client).explain(_request())


def test_empty_response_raises() -> None:
    client = _client_returning()
    with pytest.raises(ExplanationError, match="unexpected"):
        AnthropicExplainer(client=client).explain(_request())


def test_close_closes_client() -> None:
    client = _client_returning("ok")
    AnthropicExplainer(client=client).close()
    client.close.assert_called_once()


def test_prompt_contains_position_details() -> None:
    prompt = build_prompt(_request())
    assert "4k3/8/8/3n4/8/2N5/8/4K3 w - - 0 1" in prompt
    assert "c3d5" in prompt
    assert "White's turn (move 23)" in prompt
    assert "3.0 pawn swing" in prompt
