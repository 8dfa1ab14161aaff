"""End-to-end critical-position search over a batch of games.

Pipeline
--------
For each game, in input order:

1. Work out which colour the subject played (case-insensitive username
   match against the White/Black headers).
2. Walk the plies from ``skip_opening_moves * 2`` onward, considering only
   the subject's own moves.
3. Skip a ply without touching the engine when its before-position is
   already cached as decided (``|eval| > decided_threshold``).
4. Evaluate the before- and after-positions through the per-run
   :class:`~blunderdrill.eval_cache.EvalCache`.  The after-position of one
   ply is usually the before-position of the same side's next ply, so the
   cache pays for itself.
5. Classify the ply.  Mistakes get a tactical motif and an explanation and
   are counted as blunders (delta >= 2.0) or mistakes; reinforcements are
   collected separately.  The same move from the same position is recorded
   only once per run, however many games repeat it.
6. When the game is finished, stream its single worst mistake.

Events
------
:meth:`Analyzer.run` is an async generator producing, in order,
:class:`ProgressEvent` (after every candidate ply), :class:`PuzzleEvent`
(at most one per game), :class:`GameSkipped` (unparseable input or unknown
player) and finally :class:`AnalysisComplete`.

Failure and cancellation
------------------------
Engine errors (init timeout, analysis timeout, dead process) end the whole
run and propagate to the caller.  Closing the stream early (``aclose()`` or
task cancellation) terminates the engine session; ``Analyzer.result``
keeps everything found so far.
"""

from __future__ import annotations

import asyncio
import enum
import sys
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Sequence, Union

import chess.pgn

from .classifier import (
    DECIDED_THRESHOLD,
    DEFAULT_EVAL_THRESHOLD,
    DEFAULT_SKIP_OPENING_MOVES,
    Verdict,
    choose_pattern,
    classify_difficulty,
    classify_ply,
    eval_delta_for_side,
    is_blunder,
    is_decided,
    opening_skip_index,
)
from .engine import PositionEvaluator
from .errors import ParseFailure
from .eval_cache import EvalCache
from .explainer import (
    ExplanationGenerator,
    ExplanationRequest,
    reinforcement_explanation,
    template_explanation,
)
from .models import (
    AnalysisProgress,
    AnalysisResult,
    CriticalPosition,
    GameRecord,
    PlyRecord,
    PositionEvaluation,
    Puzzle,
    Side,
    SkippedGame,
)
from .notation import is_legal_move
from .pgn import format_pgn_date, load_game
from .puzzles import to_puzzle
from .tactics import detect_tactics

_TAG = "[analyze]"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class AnalysisConfig:
    depth: int = 12                        # engine search depth per position
    eval_threshold: float = DEFAULT_EVAL_THRESHOLD
    skip_opening_moves: int = DEFAULT_SKIP_OPENING_MOVES
    decided_threshold: float = DECIDED_THRESHOLD
    engine_path: Path | None = None        # None = auto-detect Stockfish
    engine_threads: int = 1
    engine_hash_mb: int = 16
    init_timeout: float = 30.0
    analysis_timeout: float = 30.0
    stream_puzzles: bool = True            # emit each game's worst mistake
    verbose: bool = False


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class RunState(str, enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    progress: AnalysisProgress


@dataclass(frozen=True)
class PuzzleEvent:
    puzzle: Puzzle
    position: CriticalPosition


@dataclass(frozen=True)
class GameSkipped:
    game_index: int
    reason: str


@dataclass(frozen=True)
class AnalysisComplete:
    result: AnalysisResult


AnalysisEvent = Union[ProgressEvent, PuzzleEvent, GameSkipped, AnalysisComplete]

GameInput = Union[GameRecord, chess.pgn.Game, str]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Analyzer:
    """Runs one analysis pass.  Owns the engine session and the eval cache.

    Each instance runs once; concurrent analyses need separate instances,
    each with its own evaluator.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        evaluator: PositionEvaluator | None = None,
        explainer: ExplanationGenerator | None = None,
    ) -> None:
        self.config = config or AnalysisConfig()
        self.state = RunState.IDLE
        self.result = AnalysisResult()
        self.cache: EvalCache | None = None
        self._evaluator = evaluator
        self._explainer = explainer
        # (fen, player move) pairs already recorded in this run.
        self._seen: set[tuple[str, str]] = set()

    async def run(
        self,
        games: Sequence[GameInput],
        username: str,
    ) -> AsyncIterator[AnalysisEvent]:
        if self.state is not RunState.IDLE:
            raise RuntimeError("an Analyzer can only run once")

        cfg = self.config
        evaluator = self._evaluator or PositionEvaluator.from_path(
            cfg.engine_path,
            threads=cfg.engine_threads,
            hash_mb=cfg.engine_hash_mb,
            init_timeout=cfg.init_timeout,
            analysis_timeout=cfg.analysis_timeout,
            verbose=cfg.verbose,
        )
        self.cache = EvalCache(evaluator, cfg.depth)
        total = len(games)

        self.state = RunState.INITIALIZING
        try:
            await evaluator.initialize()
            self.state = RunState.ANALYZING
            self._log(f"{_TAG} Analyzing {total} game{'s' if total != 1 else ''} for {username} …")

            for gi, item in enumerate(games):
                record, played_as, reason = self._prepare(item, username)
                if record is None or played_as is None:
                    self.result.skipped_games.append(SkippedGame(gi, reason))
                    self._log(f"{_TAG} Skipping game {gi + 1}/{total}: {reason}")
                    yield GameSkipped(gi, reason)
                    continue

                async for event in self._analyze_game(gi, total, record, played_as):
                    yield event
                self.result.total_games_analyzed += 1

                if cfg.stream_puzzles:
                    best = self._best_mistake(gi)
                    if best is not None:
                        index, position = best
                        yield PuzzleEvent(to_puzzle(position, index), position)

            self.state = RunState.COMPLETED
            self._log(
                f"{_TAG} Done: {self.result.total_games_analyzed} games, "
                f"{self.result.blunders} blunders, {self.result.mistakes} mistakes, "
                f"{len(self.result.best_moves_found)} best moves found "
                f"(cache {self.cache.hits} hits / {self.cache.misses} misses)."
            )
            yield AnalysisComplete(self.result)
        except (GeneratorExit, asyncio.CancelledError):
            self.state = RunState.CANCELLED
            raise
        except Exception:
            self.state = RunState.FAILED
            raise
        finally:
            await evaluator.terminate()

    # ------------------------------------------------------------------
    # Per game
    # ------------------------------------------------------------------

    def _prepare(
        self, item: GameInput, username: str
    ) -> tuple[GameRecord | None, Side | None, str]:
        if isinstance(item, GameRecord):
            record = item
        else:
            try:
                record = load_game(item)
            except ParseFailure as exc:
                return None, None, f"unparseable game ({exc})"

        played_as = record.side_of(username)
        if played_as is None:
            return record, None, (
                f"{username} is neither White ({record.white}) nor Black ({record.black})"
            )
        return record, played_as, ""

    async def _analyze_game(
        self,
        gi: int,
        total_games: int,
        record: GameRecord,
        played_as: Side,
    ) -> AsyncIterator[ProgressEvent]:
        cfg = self.config
        assert self.cache is not None
        plies = record.plies
        start = opening_skip_index(cfg.skip_opening_moves)

        for pi in range(start, len(plies)):
            ply = plies[pi]
            if ply.side != played_as:
                continue

            status = f"Game {gi + 1}/{total_games}, move {ply.move_number}"
            cached = self.cache.get(ply.fen_before)
            if cached is not None and is_decided(cached.evaluation, cfg.decided_threshold):
                status += " (decided, skipped)"
            elif not is_legal_move(ply.fen_before, ply.uci):
                print(f"{_TAG} {status}: illegal move {ply.uci}, skipped", file=sys.stderr, flush=True)
                status += " (illegal, skipped)"
            else:
                before = await self.cache.get_or_compute(ply.fen_before)
                after = await self.cache.get_or_compute(ply.fen_after)
                await self._classify(gi, record, played_as, ply, before, after)

            yield ProgressEvent(
                AnalysisProgress(
                    game_index=gi,
                    total_games=total_games,
                    ply_index=pi,
                    total_plies=len(plies),
                    status=status,
                )
            )

    async def _classify(
        self,
        gi: int,
        record: GameRecord,
        played_as: Side,
        ply: PlyRecord,
        before: PositionEvaluation,
        after: PositionEvaluation,
    ) -> None:
        cfg = self.config
        verdict = classify_ply(
            before.evaluation,
            after.evaluation,
            ply.side,
            before.best_move,
            ply.uci,
            eval_threshold=cfg.eval_threshold,
        )
        if verdict is None:
            return

        best_move = before.best_move
        if best_move is None or not is_legal_move(ply.fen_before, best_move):
            print(
                f"{_TAG} Engine best move {best_move!r} unusable at {ply.fen_before}, ply skipped",
                file=sys.stderr,
                flush=True,
            )
            return

        key = (ply.fen_before, ply.uci)
        if key in self._seen:
            self._log(f"{_TAG}   {ply.san} at move {ply.move_number} already recorded, skipped")
            return
        self._seen.add(key)

        delta = eval_delta_for_side(before.evaluation, after.evaluation, ply.side)
        opponent, opponent_rating = record.opponent_of(played_as)
        context = dict(
            opponent=opponent,
            opponent_rating=opponent_rating,
            played_as=played_as,
            date=format_pgn_date(record.date) if record.date else "",
            time_control=record.time_control,
            opening=record.opening,
            game_index=gi,
        )

        if verdict is Verdict.MISTAKE:
            tactics = detect_tactics(
                ply.fen_before, best_move, ply.uci, before.evaluation, after.evaluation
            )
            pattern = choose_pattern(tactics.theme, delta, ply.clock_after)
            explanation = tactics.explanation
            if tactics.theme == "unknown":
                explanation = template_explanation(
                    delta, before.evaluation, after.evaluation, ply.side,
                    ply.move_number, ply.clock_after, opponent,
                )
            if self._explainer is not None:
                explanation = await self._explain(
                    ExplanationRequest(
                        fen=ply.fen_before,
                        best_move=best_move,
                        player_move=ply.uci,
                        eval_before=before.evaluation,
                        eval_after=after.evaluation,
                        side=ply.side,
                        move_number=ply.move_number,
                        opponent=opponent,
                        pattern=pattern,
                    ),
                    fallback=explanation,
                )

            self.result.critical_positions.append(
                CriticalPosition(
                    fen=ply.fen_before,
                    best_move=best_move,
                    player_move=ply.uci,
                    eval_before=before.evaluation,
                    eval_after=after.evaluation,
                    eval_delta=delta,
                    move_number=ply.move_number,
                    side=ply.side,
                    clock_time=ply.clock_after,
                    difficulty=classify_difficulty(delta, ply.clock_after),
                    pattern=pattern,
                    explanation=explanation,
                    **context,
                )
            )
            if is_blunder(delta):
                self.result.blunders += 1
            else:
                self.result.mistakes += 1
            self._log(
                f"{_TAG}   {ply.move_number}{'.' if ply.side == 'white' else '...'}{ply.san}: "
                f"{pattern} ({delta:+.1f}), best {best_move}"
            )
        else:
            self.result.best_moves_found.append(
                CriticalPosition(
                    fen=ply.fen_before,
                    best_move=best_move,
                    player_move=ply.uci,
                    eval_before=before.evaluation,
                    eval_after=after.evaluation,
                    eval_delta=delta,
                    move_number=ply.move_number,
                    side=ply.side,
                    clock_time=ply.clock_after,
                    difficulty="hard",
                    pattern="Best Move Found",
                    explanation=reinforcement_explanation(ply.move_number, after.evaluation),
                    **context,
                )
            )

    async def _explain(self, request: ExplanationRequest, fallback: str) -> str:
        assert self._explainer is not None
        try:
            text = await asyncio.to_thread(self._explainer.explain, request)
        except Exception as exc:  # noqa: BLE001
            print(f"[explain] Falling back to template: {exc}", file=sys.stderr, flush=True)
            return fallback
        return text or fallback

    def _best_mistake(self, gi: int) -> tuple[int, CriticalPosition] | None:
        candidates = [
            (i, p) for i, p in enumerate(self.result.critical_positions)
            if p.game_index == gi
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c[1].eval_delta)

    def _log(self, message: str) -> None:
        if self.config.verbose:
            print(message, flush=True)


# ---------------------------------------------------------------------------
# Convenience
# ---------------------------------------------------------------------------


async def analyze_games(
    games: Sequence[GameInput],
    username: str,
    config: AnalysisConfig | None = None,
    evaluator: PositionEvaluator | None = None,
    explainer: ExplanationGenerator | None = None,
    on_event: Callable[[AnalysisEvent], None] | None = None,
) -> AnalysisResult:
    """Run a full analysis and return the result, forwarding every event."""
    analyzer = Analyzer(config, evaluator=evaluator, explainer=explainer)
    async with aclosing(analyzer.run(games, username)) as stream:
        async for event in stream:
            if on_event is not None:
                on_event(event)
    return analyzer.result
