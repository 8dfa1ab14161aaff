"""Single-flight UCI engine session.

The evaluator drives the engine through python-chess's asyncio protocol
(:func:`chess.engine.popen_uci`), which turns raw ``info``/``bestmove``
output into typed :class:`chess.engine.InfoDict` / :class:`~chess.engine.PovScore`
records before any scoring logic sees them.

Not safe for concurrent submissions: an ``asyncio.Lock`` serialises callers.
Every search is started as a new game, so the engine receives
``ucinewgame`` + ``isready`` and answers ``readyok`` before the position is
sent.  A search abandoned on timeout is stopped with ``stop``.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Tuple

import chess
import chess.engine

from .errors import (
    EngineAnalysisTimeout,
    EngineError,
    EngineInitTimeout,
    EngineNotReady,
    EngineTerminated,
)
from .models import PositionEvaluation

# Forced mates are reported as this many pawns rather than exact distances.
MATE_PAWNS = 99.0

_DEFAULT_TIMEOUT = 30.0

EngineConnection = Tuple[asyncio.SubprocessTransport, chess.engine.UciProtocol]
EngineOpener = Callable[[], Awaitable[EngineConnection]]


def find_stockfish() -> Path:
    """Return the path to the Stockfish binary.

    Resolution order:
    1. ``BLUNDERDRILL_STOCKFISH_PATH`` environment variable
    2. ``which stockfish`` on ``$PATH``
    """
    env_val = os.environ.get("BLUNDERDRILL_STOCKFISH_PATH")
    if env_val:
        candidate = Path(env_val)
        if candidate.is_file():
            return candidate
        raise FileNotFoundError(
            f"BLUNDERDRILL_STOCKFISH_PATH={env_val!r} does not point to an existing file"
        )

    which_result = shutil.which("stockfish")
    if which_result:
        return Path(which_result)

    raise FileNotFoundError(
        "stockfish not found in PATH. "
        "Install it (e.g. apt install stockfish) or set BLUNDERDRILL_STOCKFISH_PATH."
    )


class PositionEvaluator:
    """Evaluates one position at a time over a UCI engine connection.

    *opener* is a coroutine function returning an initialised
    ``(transport, UciProtocol)`` pair, normally
    ``chess.engine.popen_uci(path)``.
    """

    def __init__(
        self,
        opener: EngineOpener,
        threads: int = 1,
        hash_mb: int = 16,
        init_timeout: float = _DEFAULT_TIMEOUT,
        analysis_timeout: float = _DEFAULT_TIMEOUT,
        verbose: bool = False,
    ) -> None:
        self._opener = opener
        self._threads = threads
        self._hash_mb = hash_mb
        self._init_timeout = init_timeout
        self._analysis_timeout = analysis_timeout
        self._verbose = verbose
        self._lock = asyncio.Lock()
        self._transport: asyncio.SubprocessTransport | None = None
        self._protocol: chess.engine.UciProtocol | None = None
        self._ready = False
        self.calls = 0

    @classmethod
    def from_path(
        cls,
        path: Path | None = None,
        threads: int = 1,
        hash_mb: int = 16,
        init_timeout: float = _DEFAULT_TIMEOUT,
        analysis_timeout: float = _DEFAULT_TIMEOUT,
        verbose: bool = False,
    ) -> "PositionEvaluator":
        engine_path = str(path or find_stockfish())
        return cls(
            lambda: chess.engine.popen_uci(engine_path),
            threads=threads,
            hash_mb=hash_mb,
            init_timeout=init_timeout,
            analysis_timeout=analysis_timeout,
            verbose=verbose,
        )

    @property
    def ready(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Start the engine and block until it answers ``readyok``."""
        try:
            await asyncio.wait_for(self._handshake(), timeout=self._init_timeout)
        except asyncio.TimeoutError:
            self._close_transport()
            raise EngineInitTimeout(
                f"engine not ready after {self._init_timeout:g}s"
            ) from None
        except (chess.engine.EngineError, OSError) as exc:
            self._close_transport()
            raise EngineTerminated(f"engine failed to start: {exc}") from exc

        self._ready = True
        if self._verbose:
            print(
                f"[engine] Ready (threads={self._threads}, hash={self._hash_mb}MB)",
                flush=True,
            )

    async def terminate(self) -> None:
        """Release the engine session.  Safe to call more than once."""
        self._ready = False
        protocol = self._protocol
        if protocol is None:
            return
        if not protocol.returncode.done():
            protocol.send_line("quit")
        self._close_transport()
        if self._verbose:
            print(f"[engine] Terminated after {self.calls} evaluations", flush=True)

    async def __aenter__(self) -> "PositionEvaluator":
        await self.initialize()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.terminate()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_position(self, fen: str, depth: int) -> PositionEvaluation:
        """Search *fen* to *depth*; scores come back from White's perspective."""
        if not self._ready:
            raise EngineNotReady("analyze_position() called before initialize()")

        async with self._lock:
            self.calls += 1
            try:
                return await asyncio.wait_for(
                    self._search(fen, depth), timeout=self._analysis_timeout
                )
            except asyncio.TimeoutError:
                raise EngineAnalysisTimeout(fen, self._analysis_timeout) from None
            except chess.engine.EngineTerminatedError as exc:
                raise EngineTerminated(str(exc)) from exc
            except chess.engine.EngineError as exc:
                raise EngineError(f"engine error at {fen}: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _handshake(self) -> None:
        self._transport, self._protocol = await self._opener()
        options = {
            name: value
            for name, value in (("Threads", self._threads), ("Hash", self._hash_mb))
            if name in self._protocol.options
        }
        if options:
            await self._protocol.configure(options)
        await self._protocol.ping()

    async def _search(self, fen: str, depth: int) -> PositionEvaluation:
        assert self._protocol is not None
        board = chess.Board(fen)
        # A fresh game object per search makes python-chess send ucinewgame.
        analysis = await self._protocol.analysis(
            board, chess.engine.Limit(depth=depth), game=object()
        )
        with analysis:
            best = await analysis.wait()

        info = analysis.info
        score = info.get("score")
        pv = info.get("pv") or []
        move = best.move or (pv[0] if pv else None)
        return PositionEvaluation(
            fen=fen,
            evaluation=_white_pawns(score) if score is not None else 0.0,
            best_move=move.uci() if move is not None else None,
            depth=info.get("depth", depth),
        )

    def _close_transport(self) -> None:
        transport, self._transport, self._protocol = self._transport, None, None
        if transport is not None:
            transport.close()


def _white_pawns(score: chess.engine.PovScore) -> float:
    """Convert an engine score to pawns from White's perspective."""
    white = score.white()
    if white.is_mate():
        # Mate(0) (side to move is mated) scores below zero.
        return MATE_PAWNS if white.score(mate_score=100_000) > 0 else -MATE_PAWNS
    return white.score() / 100
