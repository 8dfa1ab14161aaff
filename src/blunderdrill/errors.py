"""Exception hierarchy shared by the analysis pipeline.

Engine errors are fatal to a run: a broken engine session cannot keep
producing trustworthy evaluations.  Parse and legality errors are recovered
locally by skipping the affected game or ply.
"""

from __future__ import annotations


class BlunderdrillError(Exception):
    """Base class for every error raised by blunderdrill."""


# ---------------------------------------------------------------------------
# Engine session (fatal)
# ---------------------------------------------------------------------------


class EngineError(BlunderdrillError):
    """The engine session failed; the current run cannot continue."""


class EngineInitTimeout(EngineError):
    """The engine did not report ``readyok`` within the init timeout."""


class EngineAnalysisTimeout(EngineError):
    """No ``bestmove`` arrived for a position within the analysis timeout."""

    def __init__(self, fen: str, timeout: float) -> None:
        super().__init__(f"Analysis timeout after {timeout:g}s for FEN: {fen}")
        self.fen = fen
        self.timeout = timeout


class EngineTerminated(EngineError):
    """The engine process exited or its output stream closed."""


class EngineNotReady(EngineError):
    """A position was submitted before ``initialize()`` completed."""


# ---------------------------------------------------------------------------
# Recoverable
# ---------------------------------------------------------------------------


class ParseFailure(BlunderdrillError):
    """Game text could not be turned into a GameRecord."""


class IllegalPositionOrMove(BlunderdrillError, ValueError):
    """A FEN or a UCI move failed legality validation."""


class ExplanationError(BlunderdrillError):
    """The external explanation generator failed."""
