"""Tests for the UCI evaluator (no real Stockfish required)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import chess
import chess.engine
import pytest

from blunderdrill.engine import MATE_PAWNS, PositionEvaluator, find_stockfish
from blunderdrill.errors import (
    EngineAnalysisTimeout,
    EngineInitTimeout,
    EngineNotReady,
    EngineTerminated,
)

_START_FEN = chess.STARTING_FEN
# Position after 1.e4 (black to move)
_POST_E4_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
# Fool's Mate final position (white is mated, white to move)
_FOOLS_MATE_FEN = "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"

_UCI_HELLO = [
    "id name Stockfish 16",
    "option name Threads type spin default 1 min 1 max 1024",
    "option name Hash type spin default 16 min 1 max 33554432",
    "uciok",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Transport(chess.engine.MockTransport):
    """Scripted engine pipe that records being closed."""

    closed = False

    def close(self) -> None:
        self.closed = True


def _search(position: str, replies: list[str], depth: int = 12) -> list[tuple[str, list[str]]]:
    return [
        ("ucinewgame", []),
        ("isready", ["readyok"]),
        (position, []),
        (f"go depth {depth}", replies),
    ]


def _evaluator(
    script: list[tuple[str, list[str]]],
    hello: list[str] = _UCI_HELLO,
    **kwargs,
) -> tuple[PositionEvaluator, dict[str, _Transport]]:
    """Evaluator whose engine expects ``uci`` followed by *script*."""
    opened: dict[str, _Transport] = {}

    async def opener():
        protocol = chess.engine.UciProtocol()
        transport = _Transport(protocol)
        transport.expect("uci", hello)
        for command, replies in script:
            transport.expect(command, replies)
        opened["transport"] = transport
        await protocol.initialize()
        return transport, protocol

    return PositionEvaluator(opener, **kwargs), opened


def _evaluate(fen: str, position: str, replies: list[str], depth: int = 12):
    evaluator, opened = _evaluator(
        [("isready", ["readyok"])] + _search(position, replies, depth) + [("quit", [])]
    )

    async def go():
        await evaluator.initialize()
        try:
            return await evaluator.analyze_position(fen, depth)
        finally:
            await evaluator.terminate()

    result = asyncio.run(go())
    opened["transport"].assert_done()
    return result


# ---------------------------------------------------------------------------
# find_stockfish
# ---------------------------------------------------------------------------


def test_find_stockfish_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = tmp_path / "stockfish"
    fake.touch()
    monkeypatch.setenv("BLUNDERDRILL_STOCKFISH_PATH", str(fake))
    assert find_stockfish() == fake


def test_find_stockfish_env_var_missing_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLUNDERDRILL_STOCKFISH_PATH", "/nonexistent/stockfish")
    with pytest.raises(FileNotFoundError, match="BLUNDERDRILL_STOCKFISH_PATH"):
        find_stockfish()


def test_find_stockfish_via_which(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BLUNDERDRILL_STOCKFISH_PATH", raising=False)
    with patch("blunderdrill.engine.shutil.which", return_value="/usr/bin/stockfish"):
        result = find_stockfish()
    assert result == Path("/usr/bin/stockfish")


def test_find_stockfish_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BLUNDERDRILL_STOCKFISH_PATH", raising=False)
    with patch("blunderdrill.engine.shutil.which", return_value=None):
        with pytest.raises(FileNotFoundError, match="stockfish not found"):
            find_stockfish()


def test_from_path_opens_engine_with_popen_uci() -> None:
    with patch("blunderdrill.engine.chess.engine.popen_uci") as popen:
        evaluator = PositionEvaluator.from_path(Path("/opt/stockfish"))
        evaluator._opener()
    popen.assert_called_once_with("/opt/stockfish")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_initialize_configures_threads_and_hash() -> None:
    evaluator, opened = _evaluator(
        [
            ("setoption name Threads value 2", []),
            ("setoption name Hash value 64", []),
            ("isready", ["readyok"]),
            ("quit", []),
        ],
        threads=2,
        hash_mb=64,
    )

    async def go():
        await evaluator.initialize()
        ready = evaluator.ready
        await evaluator.terminate()
        return ready

    assert asyncio.run(go()) is True
    opened["transport"].assert_done()
    assert opened["transport"].closed


def test_default_options_are_not_resent() -> None:
    evaluator, opened = _evaluator([("isready", ["readyok"])])

    async def go():
        await evaluator.initialize()

    asyncio.run(go())
    opened["transport"].assert_done()


def test_initialize_times_out_without_uciok() -> None:
    evaluator, _ = _evaluator([], hello=[], init_timeout=0.05)

    with pytest.raises(EngineInitTimeout):
        asyncio.run(evaluator.initialize())
    assert not evaluator.ready


def test_initialize_times_out_without_readyok() -> None:
    evaluator, opened = _evaluator([("isready", [])], init_timeout=0.05)

    with pytest.raises(EngineInitTimeout, match="not ready"):
        asyncio.run(evaluator.initialize())
    assert opened["transport"].closed


def test_analyze_before_initialize_raises() -> None:
    evaluator, _ = _evaluator([])

    with pytest.raises(EngineNotReady):
        asyncio.run(evaluator.analyze_position(_START_FEN, 12))


def test_terminate_is_idempotent() -> None:
    evaluator, opened = _evaluator([("isready", ["readyok"]), ("quit", [])])

    async def go():
        await evaluator.initialize()
        await evaluator.terminate()
        await evaluator.terminate()
        return evaluator.ready

    assert asyncio.run(go()) is False
    # A second "quit" would fail the scripted transport.
    opened["transport"].assert_done()
    assert opened["transport"].closed


def test_terminate_before_initialize_is_noop() -> None:
    evaluator, opened = _evaluator([])
    asyncio.run(evaluator.terminate())
    assert "transport" not in opened


def test_context_manager_terminates() -> None:
    evaluator, opened = _evaluator([("isready", ["readyok"]), ("quit", [])])

    async def go():
        async with evaluator:
            assert evaluator.ready

    asyncio.run(go())
    opened["transport"].assert_done()
    assert opened["transport"].closed


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def test_last_score_before_bestmove_wins() -> None:
    result = _evaluate(_START_FEN, "position startpos", [
        "info depth 10 seldepth 14 score cp 20 nodes 1000 pv e2e4 e7e5",
        "info depth 12 seldepth 16 score cp 35 nodes 5000 pv d2d4 d7d5",
        "bestmove d2d4 ponder d7d5",
    ])
    assert result.evaluation == pytest.approx(0.35)
    assert result.best_move == "d2d4"
    assert result.depth == 12
    assert result.fen == _START_FEN


def test_black_to_move_score_is_flipped() -> None:
    result = _evaluate(_POST_E4_FEN, f"position fen {_POST_E4_FEN}", [
        "info depth 12 score cp 30 pv e7e5",
        "bestmove e7e5",
    ])
    assert result.evaluation == pytest.approx(-0.30)
    assert result.best_move == "e7e5"


def test_mate_for_side_to_move_saturates() -> None:
    result = _evaluate(_START_FEN, "position startpos", [
        "info depth 12 score mate 3 pv e2e4",
        "bestmove e2e4",
    ])
    assert result.evaluation == MATE_PAWNS


def test_black_getting_mated_is_good_for_white() -> None:
    result = _evaluate(_POST_E4_FEN, f"position fen {_POST_E4_FEN}", [
        "info depth 12 score mate -2 pv e7e5",
        "bestmove e7e5",
    ])
    assert result.evaluation == MATE_PAWNS


def test_mate_zero_is_lost_for_side_to_move() -> None:
    result = _evaluate(_FOOLS_MATE_FEN, f"position fen {_FOOLS_MATE_FEN}", [
        "info depth 0 score mate 0",
        "bestmove (none)",
    ])
    assert result.evaluation == -MATE_PAWNS
    assert result.best_move is None


def test_lowerbound_score_is_parsed() -> None:
    result = _evaluate(_START_FEN, "position startpos", [
        "info depth 11 score cp 50 lowerbound pv e2e4",
        "bestmove e2e4",
    ])
    assert result.evaluation == pytest.approx(0.5)


def test_search_depth_is_sent() -> None:
    result = _evaluate(_START_FEN, "position startpos", ["bestmove e2e4"], depth=14)
    assert result.best_move == "e2e4"
    assert result.depth == 14


# ---------------------------------------------------------------------------
# Protocol discipline
# ---------------------------------------------------------------------------


def test_concurrent_submissions_are_serialised() -> None:
    evaluator, opened = _evaluator(
        [("isready", ["readyok"])]
        + _search("position startpos", ["info depth 12 score cp 20 pv e2e4", "bestmove e2e4"])
        + _search(f"position fen {_POST_E4_FEN}", ["info depth 12 score cp 25 pv c7c5", "bestmove c7c5"])
        + [("quit", [])]
    )

    async def go():
        await evaluator.initialize()
        results = await asyncio.gather(
            evaluator.analyze_position(_START_FEN, 12),
            evaluator.analyze_position(_POST_E4_FEN, 12),
        )
        await evaluator.terminate()
        return evaluator.calls, results

    calls, (first, second) = asyncio.run(go())
    opened["transport"].assert_done()
    assert calls == 2
    assert (first.best_move, second.best_move) == ("e2e4", "c7c5")
    assert first.evaluation == pytest.approx(0.20)
    assert second.evaluation == pytest.approx(-0.25)


def test_analysis_timeout_stops_search_and_raises_typed_error() -> None:
    evaluator, opened = _evaluator(
        [("isready", ["readyok"])]
        + _search("position startpos", [])
        + [("stop", ["bestmove e2e4"]), ("quit", [])],
        analysis_timeout=0.05,
    )

    async def go():
        await evaluator.initialize()
        try:
            await evaluator.analyze_position(_START_FEN, 12)
        finally:
            await evaluator.terminate()

    with pytest.raises(EngineAnalysisTimeout) as excinfo:
        asyncio.run(go())
    assert excinfo.value.fen == _START_FEN
    assert "Analysis timeout" in str(excinfo.value)
    opened["transport"].assert_done()
    assert opened["transport"].closed


def test_dead_engine_raises_terminated() -> None:
    evaluator, opened = _evaluator([("isready", ["readyok"])])

    async def go():
        await evaluator.initialize()
        transport = opened["transport"]
        transport.protocol.connection_lost(None)
        try:
            await evaluator.analyze_position(_START_FEN, 12)
        finally:
            await evaluator.terminate()

    with pytest.raises(EngineTerminated):
        asyncio.run(go())
    assert opened["transport"].closed
