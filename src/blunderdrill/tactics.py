"""Tactical motif detection for the engine's recommended move.

The best move is replayed on the position and the resulting board is
inspected for, in order:

1. checkmate (returns immediately),
2. captures: winning capture, hanging piece or plain capture,
3. forks of two or more pieces worth a minor piece or more (or the king),
4. checks, with or without a simultaneous attack on a valuable piece,
5. promotion (stacks on top of whatever else was found).

When nothing is found the move is described as positional.  The reported
theme is the strongest motif found; explanation clauses keep the order in
which they were detected.

The undefended-piece test generates legal moves for every defender, so this
module is meant for plies that already passed the mistake gate, not for
every ply of a game.
"""

from __future__ import annotations

import chess

from .models import TacticalAnalysis

_PIECE_VALUES: dict[int, int] = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}

# Strongest first.
_THEME_RANK = (
    "checkmate",
    "fork",
    "check and win",
    "winning capture",
    "hanging piece",
    "capture",
    "check",
    "promotion",
    "positional",
)

_MATE_DISPLAY = 90.0


def detect_tactics(
    fen: str,
    best_move: str,
    player_move: str | None = None,
    eval_before: float | None = None,
    eval_after: float | None = None,
) -> TacticalAnalysis:
    """Classify *best_move* in *fen* and explain it in plain words.

    Evaluations, when given, are White-perspective pawns; they are shown
    from the point of view of the side to move.
    """
    board = chess.Board(fen)
    try:
        move = chess.Move.from_uci(best_move)
    except ValueError:
        return _unknown()

    mover = board.piece_at(move.from_square)
    if mover is None:
        return _unknown()

    mover_name = chess.piece_name(mover.piece_type)
    from_name = chess.square_name(move.from_square)
    to_name = chess.square_name(move.to_square)

    if move not in board.legal_moves:
        return TacticalAnalysis(
            theme="tactic",
            clauses=(),
            explanation=(
                f"Moving the {mover_name} from {from_name} to {to_name} "
                "is the strongest continuation."
            ),
            pieces=(mover_name,),
        )

    active = board.turn
    active_label = "White" if active == chess.WHITE else "Black"
    victim_type = _captured_piece_type(board, move)

    after = board.copy(stack=False)
    after.push(move)

    if after.is_checkmate():
        return TacticalAnalysis(
            theme="checkmate",
            clauses=(f"{active_label}'s {mover_name} delivers checkmate from {to_name}",),
            explanation=f"{active_label}'s {mover_name} delivers checkmate from {to_name}!",
            pieces=_distinct([mover_name, "king"]),
        )

    themes: list[str] = []
    clauses: list[str] = []
    pieces: list[str] = [mover_name]

    # --- captures -----------------------------------------------------------
    if victim_type is not None:
        victim_name = chess.piece_name(victim_type)
        pieces.append(victim_name)
        if _PIECE_VALUES[victim_type] > _PIECE_VALUES[mover.piece_type]:
            themes.append("winning capture")
            clauses.append(
                f"the {mover_name} on {from_name} captures the more valuable "
                f"{victim_name} on {to_name}"
            )
        elif _is_undefended(after, move.to_square, not active):
            themes.append("hanging piece")
            clauses.append(
                f"the {victim_name} on {to_name} is undefended, "
                f"so the {mover_name} wins it for free"
            )
        else:
            themes.append("capture")
            clauses.append(f"the {mover_name} captures the {victim_name} on {to_name}")

    # --- forks --------------------------------------------------------------
    targets = _attacked_targets(after, move.to_square, not active)
    valuable = [
        (sq, pt) for sq, pt in targets
        if pt == chess.KING or _PIECE_VALUES[pt] >= 3
    ]
    is_fork = len(valuable) >= 2
    if is_fork:
        themes.append("fork")
        pieces.extend(chess.piece_name(pt) for _, pt in valuable)
        listed = " and ".join(
            f"{chess.piece_name(pt)} on {chess.square_name(sq)}" for sq, pt in valuable
        )
        clauses.append(f"the {mover_name} on {to_name} forks the {listed}")

    # --- checks -------------------------------------------------------------
    if after.is_check() and not is_fork:
        hit = [(sq, pt) for sq, pt in valuable if pt != chess.KING]
        if hit:
            sq, pt = hit[0]
            themes.append("check and win")
            pieces.append(chess.piece_name(pt))
            clauses.append(
                f"the {mover_name} gives check from {to_name} while attacking "
                f"the {chess.piece_name(pt)} on {chess.square_name(sq)}"
            )
        else:
            themes.append("check")
            clauses.append(
                f"the {mover_name} gives check from {to_name}, "
                "forcing the opponent to respond"
            )

    # --- promotion ----------------------------------------------------------
    if move.promotion:
        promoted = chess.piece_name(move.promotion)
        themes.append("promotion")
        pieces.append(promoted)
        clauses.append(f"the pawn promotes to a {promoted} on {to_name}")

    if clauses:
        explanation = "Here, " + ". Also, ".join(clauses) + "."
    else:
        themes.append("positional")
        explanation = (
            f"The key move is {mover_name} to {to_name}, which strengthens your "
            "position and creates problems for your opponent."
        )

    if player_move and player_move != best_move:
        played = _san_or_none(board, player_move)
        if played:
            explanation += f" In the game, {played} was played instead."

    if eval_before is not None and eval_after is not None:
        explanation += _eval_clause(eval_before, eval_after, active)

    return TacticalAnalysis(
        theme=min(themes, key=_THEME_RANK.index),
        clauses=tuple(clauses),
        explanation=explanation,
        pieces=_distinct(pieces),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _unknown() -> TacticalAnalysis:
    return TacticalAnalysis(
        theme="unknown",
        clauses=(),
        explanation="Find the best move in this position.",
        pieces=(),
    )


def _captured_piece_type(board: chess.Board, move: chess.Move) -> int | None:
    if board.is_en_passant(move):
        return chess.PAWN
    victim = board.piece_at(move.to_square)
    if victim is not None and victim.color != board.turn:
        return victim.piece_type
    return None


def _is_undefended(after: chess.Board, square: chess.Square, defender: chess.Color) -> bool:
    """True when no *defender* piece can legally recapture on *square*."""
    probe = after.copy(stack=False)
    probe.turn = defender
    for _ in probe.generate_legal_captures(to_mask=chess.BB_SQUARES[square]):
        return False
    return True


def _attacked_targets(
    after: chess.Board, square: chess.Square, enemy: chess.Color
) -> list[tuple[chess.Square, int]]:
    targets = []
    for sq in after.attacks(square):
        piece = after.piece_at(sq)
        if piece is not None and piece.color == enemy:
            targets.append((sq, piece.piece_type))
    return targets


def _san_or_none(board: chess.Board, uci: str) -> str | None:
    try:
        move = chess.Move.from_uci(uci)
    except ValueError:
        return None
    if move not in board.legal_moves:
        return None
    return board.san(move)


def _fmt_eval(value: float) -> str:
    if value >= _MATE_DISPLAY:
        return "Mate"
    if value <= -_MATE_DISPLAY:
        return "-Mate"
    return f"+{value:.1f}" if value > 0 else f"{value:.1f}"


def _eval_clause(eval_before: float, eval_after: float, active: chess.Color) -> str:
    flip = 1 if active == chess.WHITE else -1
    before, after = eval_before * flip + 0.0, eval_after * flip + 0.0
    text = f" (eval: {_fmt_eval(before)} → {_fmt_eval(after)}"
    if abs(before) < _MATE_DISPLAY and abs(after) < _MATE_DISPLAY:
        text += f", {abs(after - before):.1f} pawn swing"
    return text + ")"


def _distinct(names: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(names))
