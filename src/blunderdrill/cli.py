"""Command-line entry-point for blunderdrill.

Usage
-----
  blunderdrill analyze  --pgn games.pgn --username <U> ...   (local PGN file)
  blunderdrill chesscom --username <U> ...                   (chess.com games)

Run ``blunderdrill <command> --help`` for full option listings.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, Sequence

import click

from .analyzer import (
    AnalysisConfig,
    AnalysisEvent,
    GameSkipped,
    PuzzleEvent,
    analyze_games,
)
from .classifier import DEFAULT_EVAL_THRESHOLD, DEFAULT_SKIP_OPENING_MOVES
from .errors import EngineError, ExplanationError
from .explainer import AnthropicExplainer
from .export import export_json, export_pgn
from .fetcher import ChessComApiError, fetch_recent_games
from .models import AnalysisResult
from .pgn import read_games


@click.group()
def main() -> None:
    """blunderdrill – turn your own mistakes into training puzzles.

    \b
    Commands:
      analyze   Analyse games from a local PGN file.
      chesscom  Download recent chess.com games and analyse them.
    """


def _analysis_options(fn: Callable) -> Callable:
    """Options shared by every command that runs an analysis."""
    options = [
        click.option(
            "--username",
            required=True,
            help="Player whose mistakes to collect (matched case-insensitively).",
        ),
        click.option(
            "--depth",
            default=12,
            show_default=True,
            help="Engine search depth per position.",
        ),
        click.option(
            "--threshold",
            "eval_threshold",
            default=DEFAULT_EVAL_THRESHOLD,
            show_default=True,
            help="Minimum pawns lost by a move for it to count as a mistake.",
        ),
        click.option(
            "--skip-opening",
            "skip_opening_moves",
            default=DEFAULT_SKIP_OPENING_MOVES,
            show_default=True,
            help="Full moves at the start of each game to ignore.",
        ),
        click.option(
            "--out",
            "out_path",
            default="puzzles.json",
            show_default=True,
            help="Output JSON file for the puzzles.",
        ),
        click.option(
            "--pgn-out",
            "pgn_out",
            default=None,
            help="Also write the puzzles as an annotated PGN file.",
        ),
        click.option(
            "--reinforcement/--no-reinforcement",
            "include_reinforcement",
            default=False,
            help="Append 'best move found' puzzles to the output.",
        ),
        click.option(
            "--explain/--no-explain",
            default=False,
            help="Ask the Anthropic API for explanations (needs ANTHROPIC_API_KEY).",
        ),
        click.option(
            "--verbose/--quiet",
            default=False,
            help="Print engine and per-move progress.",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


@main.command("analyze")
@click.option(
    "--pgn",
    "pgn_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="PGN file with one or more games.",
)
@_analysis_options
def analyze_cmd(pgn_path: str, **opts) -> None:
    """Find critical positions in the games of a PGN file.

    \b
    Example:
      blunderdrill analyze --pgn my_games.pgn --username MagnusFan \\
          --out puzzles.json --pgn-out puzzles.pgn
    """
    text = Path(pgn_path).read_text(encoding="utf-8", errors="replace")
    games = read_games(text)
    if not games:
        click.echo(f"[blunderdrill] No games found in {pgn_path}.", err=True)
        sys.exit(1)

    click.echo(f"[blunderdrill] {len(games)} games loaded from {pgn_path}")
    _run(games, **opts)


# ---------------------------------------------------------------------------
# chesscom
# ---------------------------------------------------------------------------


@main.command("chesscom")
@click.option(
    "--max-games",
    "max_games",
    default=20,
    show_default=True,
    help="Maximum number of recent games to analyse.",
)
@click.option(
    "--time-class",
    "time_class",
    default="all",
    show_default=True,
    type=click.Choice(["all", "daily", "rapid", "blitz", "bullet"]),
    help="Only analyse games of this time class.",
)
@click.option(
    "--months-back",
    "months_back",
    default=1,
    show_default=True,
    help="Search the current month plus this many previous months.",
)
@_analysis_options
def chesscom_cmd(max_games: int, time_class: str, months_back: int, **opts) -> None:
    """Download recent chess.com games and find critical positions.

    \b
    Example:
      blunderdrill chesscom --username hikaru --max-games 10 --time-class blitz
    """
    try:
        fetched = fetch_recent_games(
            opts["username"],
            max_games=max_games,
            time_class=time_class,
            months_back=months_back,
            verbose=True,
        )
    except ChessComApiError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not fetched:
        click.echo("[blunderdrill] No games found (check username / time class).")
        sys.exit(1)

    _run([g.pgn for g in fetched], **opts)


# ---------------------------------------------------------------------------
# Shared runner
# ---------------------------------------------------------------------------


def _run(
    games: Sequence[str],
    username: str,
    depth: int,
    eval_threshold: float,
    skip_opening_moves: int,
    out_path: str,
    pgn_out: str | None,
    include_reinforcement: bool,
    explain: bool,
    verbose: bool,
) -> None:
    config = AnalysisConfig(
        depth=depth,
        eval_threshold=eval_threshold,
        skip_opening_moves=skip_opening_moves,
        verbose=verbose,
    )

    explainer = None
    if explain:
        try:
            explainer = AnthropicExplainer()
        except ExplanationError as exc:
            click.echo(f"[blunderdrill] {exc}; using built-in explanations.", err=True)

    click.echo(
        f"[blunderdrill] Analysing {len(games)} games for {username} "
        f"(depth {depth}, threshold {eval_threshold:g}) …"
    )
    try:
        result = asyncio.run(
            analyze_games(games, username, config, explainer=explainer, on_event=_echo_event)
        )
    except (EngineError, FileNotFoundError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    finally:
        if explainer is not None:
            explainer.close()

    puzzles = result.puzzles()
    if include_reinforcement:
        puzzles += result.reinforcement_puzzles()

    output = Path(out_path)
    export_json(puzzles, output)
    click.echo(f"[blunderdrill] Wrote {len(puzzles)} puzzles → {output}")
    if pgn_out:
        export_pgn(puzzles, Path(pgn_out))
        click.echo(f"[blunderdrill] Wrote annotated PGN → {pgn_out}")

    _echo_summary(result)


def _echo_event(event: AnalysisEvent) -> None:
    if isinstance(event, PuzzleEvent):
        pos = event.position
        dots = "." if pos.side == "white" else "..."
        click.echo(
            f"  puzzle: game {pos.game_index + 1} vs {pos.opponent}, "
            f"move {pos.move_number}{dots} {pos.pattern} "
            f"({pos.eval_delta:+.1f}, {pos.difficulty})"
        )
    elif isinstance(event, GameSkipped):
        click.echo(f"  skipped game {event.game_index + 1}: {event.reason}", err=True)


def _echo_summary(result: AnalysisResult) -> None:
    click.echo("\n[blunderdrill] Summary")
    click.echo(f"  Games analysed:     {result.total_games_analyzed}")
    click.echo(f"  Blunders:           {result.blunders}")
    click.echo(f"  Mistakes:           {result.mistakes}")
    click.echo(f"  Best moves found:   {len(result.best_moves_found)}")
    if result.skipped_games:
        click.echo(f"  Games skipped:      {len(result.skipped_games)}")
