"""Download a player's recent games from the chess.com public API.

The public API (``https://api.chess.com/pub``) needs no authentication.
Games live in monthly archives::

    GET /player/{username}/games/archives     → {"archives": [url, ...]}
    GET /player/{username}/games/{YYYY}/{MM}  → {"games": [...]}

Archives are listed oldest first, and so are the games inside each one.
:func:`fetch_recent_games` walks the newest archives backwards and returns
games most recent first, pausing briefly between archive requests.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import quote

import requests

from .errors import BlunderdrillError
from .models import Side

_API_BASE = "https://api.chess.com/pub"
_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "blunderdrill/0.1.0",
}
_TIMEOUT = 30
_ARCHIVE_PAUSE = 0.15

TimeClass = Literal["daily", "rapid", "blitz", "bullet", "all"]


class ChessComApiError(BlunderdrillError):
    """A chess.com API request failed.

    ``code`` is one of ``NETWORK_ERROR``, ``NOT_FOUND``, ``RATE_LIMITED``,
    ``PARSE_ERROR`` or ``None`` for other HTTP errors.
    """

    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


@dataclass(frozen=True)
class ChessComGame:
    url: str
    pgn: str
    time_control: str
    time_class: str
    end_time: int                     # Unix seconds
    rated: bool
    white: str
    black: str
    white_rating: int | None = None
    black_rating: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ChessComGame":
        white = data.get("white") or {}
        black = data.get("black") or {}
        return cls(
            url=data.get("url", ""),
            pgn=data.get("pgn", ""),
            time_control=data.get("time_control", ""),
            time_class=data.get("time_class", ""),
            end_time=int(data.get("end_time", 0)),
            rated=bool(data.get("rated", False)),
            white=white.get("username", ""),
            black=black.get("username", ""),
            white_rating=white.get("rating"),
            black_rating=black.get("rating"),
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def fetch_player_profile(username: str, session: requests.Session | None = None) -> dict[str, Any]:
    """Return the public profile for *username*."""
    return _api_get(f"{_API_BASE}/player/{_slug(username)}", session)


def fetch_player_stats(username: str, session: requests.Session | None = None) -> dict[str, Any]:
    """Return rating stats across all time classes for *username*."""
    return _api_get(f"{_API_BASE}/player/{_slug(username)}/stats", session)


def fetch_game_archives(username: str, session: requests.Session | None = None) -> list[str]:
    """Return the monthly archive URLs for *username*, oldest first."""
    data = _api_get(f"{_API_BASE}/player/{_slug(username)}/games/archives", session)
    return list(data.get("archives", []))


def fetch_games_for_archive(
    archive_url: str, session: requests.Session | None = None
) -> list[ChessComGame]:
    """Return every game in one monthly archive, in archive order."""
    data = _api_get(archive_url, session)
    return [ChessComGame.from_api(g) for g in data.get("games", [])]


def fetch_recent_games(
    username: str,
    max_games: int = 20,
    time_class: TimeClass = "all",
    months_back: int = 1,
    verbose: bool = False,
) -> list[ChessComGame]:
    """Fetch up to *max_games* of the player's games, most recent first.

    Parameters
    ----------
    username:
        chess.com username (case-insensitive).
    max_games:
        Stop once this many games have been collected.
    time_class:
        ``'daily'``, ``'rapid'``, ``'blitz'``, ``'bullet'`` or ``'all'``.
    months_back:
        Search the current month plus this many previous months.
    verbose:
        Print progress messages.

    Returns
    -------
    list[ChessComGame]
        Games with a non-empty PGN.  An archive that fails to download is
        reported on stderr and skipped.
    """
    session = requests.Session()
    session.headers.update(_HEADERS)
    try:
        archives = fetch_game_archives(username, session)
        recent = archives[-min(months_back + 1, len(archives)):][::-1] if archives else []

        if verbose:
            print(
                f"[fetch] {username}: {len(archives)} archives, "
                f"searching the newest {len(recent)} for up to {max_games} games …",
                flush=True,
            )

        results: list[ChessComGame] = []
        for archive_url in recent:
            if len(results) >= max_games:
                break
            try:
                games = fetch_games_for_archive(archive_url, session)
            except ChessComApiError as exc:
                print(f"[fetch] Skipping archive {archive_url}: {exc}", file=sys.stderr, flush=True)
            else:
                for game in reversed(games):
                    if len(results) >= max_games:
                        break
                    if time_class != "all" and game.time_class != time_class:
                        continue
                    if not game.pgn:
                        continue
                    results.append(game)
                if verbose:
                    print(f"[fetch]   {archive_url}: {len(results)} games so far", flush=True)
            time.sleep(_ARCHIVE_PAUSE)
    finally:
        session.close()

    if verbose:
        print(f"[fetch] Done. {len(results)} games fetched for {username}.", flush=True)
    return results


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def get_player_rating(stats: dict[str, Any], time_class: str) -> int | None:
    """Current rating for *time_class* from a stats payload, if present."""
    entry = stats.get(f"chess_{time_class}") or {}
    return (entry.get("last") or {}).get("rating")


def get_player_side(game: ChessComGame, username: str) -> Side:
    """Which colour *username* had in *game* (Black when White doesn't match)."""
    return "white" if game.white.lower() == username.lower() else "black"


def _slug(username: str) -> str:
    return quote(username.lower(), safe="")


def _api_get(url: str, session: requests.Session | None) -> dict[str, Any]:
    getter = session or requests
    try:
        resp = getter.get(url, headers=_HEADERS, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        raise ChessComApiError(f"Network error: {exc}", code="NETWORK_ERROR") from exc

    if resp.status_code == 404:
        raise ChessComApiError("Player not found", 404, "NOT_FOUND")
    if resp.status_code == 429:
        raise ChessComApiError("Rate limited by chess.com API", 429, "RATE_LIMITED")
    if not resp.ok:
        raise ChessComApiError(
            f"chess.com API error: {resp.status_code} {resp.reason}", resp.status_code
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise ChessComApiError(
            "Failed to parse API response", resp.status_code, "PARSE_ERROR"
        ) from exc
    if not isinstance(data, dict):
        raise ChessComApiError("Failed to parse API response", resp.status_code, "PARSE_ERROR")
    return data
