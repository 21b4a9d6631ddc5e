"""
Movetext -> verified positions.

``parse_movetext`` first lets python-chess read the text as one well-formed
game. If that reports errors, or consumes fewer moves than the text visibly
contains, the text is re-tokenized by hand and replayed token by token until
the first token that does not apply.
"""
from __future__ import annotations

import io
import re
from typing import Optional

import chess
import chess.pgn

from shared.models.domain import ParseOutcome, Ply
from shared.models.enums import ParseMode, Side
from shared.utils.metrics import PARSE_OUTCOMES

START_FEN = chess.STARTING_FEN

RESULT_TOKENS = frozenset({"1-0", "0-1", "1/2-1/2", "½-½", "*"})

_BRACE_COMMENT_RE = re.compile(r"\{[^}]*\}")
_LINE_COMMENT_RE = re.compile(r";[^\n]*")
_VARIATION_RE = re.compile(r"\([^()]*\)")
_NAG_RE = re.compile(r"\$\d+")
_MOVE_NUMBER_RE = re.compile(r"^\d+\.+")


def side_to_move_from_fen(fen: Optional[str]) -> Optional[Side]:
    if not fen:
        return None
    parts = fen.split()
    if len(parts) < 2:
        return None
    if parts[1] == "w":
        return Side.WHITE
    if parts[1] == "b":
        return Side.BLACK
    return None


def is_start_position(fen: Optional[str]) -> bool:
    """True when ``fen`` is the initial position (move counters ignored)."""
    if not fen:
        return False
    return fen.split()[:4] == START_FEN.split()[:4]


def tokenize_movetext(text: str) -> list[str]:
    """Raw move-section tokens with headers, comments, variations and NAGs removed."""
    body = " ".join(
        _LINE_COMMENT_RE.sub(" ", line)
        for line in text.splitlines()
        if not line.strip().startswith("[")
    )
    body = _BRACE_COMMENT_RE.sub(" ", body)
    previous = None
    while "(" in body and body != previous:
        previous = body
        body = _VARIATION_RE.sub(" ", body)
    body = _NAG_RE.sub(" ", body)
    return body.split()


def normalize_san_token(token: str) -> str:
    value = _MOVE_NUMBER_RE.sub("", token.strip())
    if value.endswith("..."):
        value = value[:-3]
    value = value.replace("0-0-0", "O-O-O").replace("0-0", "O-O")
    return value.rstrip("?!+#")


def move_tokens(text: str) -> list[str]:
    """SAN-ish tokens up to (not including) the first result marker."""
    tokens: list[str] = []
    for raw in tokenize_movetext(text):
        if raw in RESULT_TOKENS:
            break
        token = normalize_san_token(raw)
        if not token:
            continue
        if token in RESULT_TOKENS:
            break
        tokens.append(token)
    return tokens


def _ply(board: chess.Board, move: chess.Move) -> Ply:
    move_number = board.fullmove_number
    side = Side.WHITE if board.turn == chess.WHITE else Side.BLACK
    san = board.san(move)
    board.push(move)
    return Ply(san=san, fen=board.fen(), move_number=move_number, side=side)


def _parse_full(text: str) -> Optional[ParseOutcome]:
    """python-chess pass. ``None`` means the text needs manual recovery."""
    game = chess.pgn.read_game(io.StringIO(text))
    if game is None or game.errors:
        return None
    board = game.board()
    plies = [_ply(board, move) for move in game.mainline_moves()]
    if len(plies) != len(move_tokens(text)):
        return None
    return ParseOutcome(
        final_position=board.fen(),
        moves=plies,
        applied_move_count=len(plies),
        parse_mode=ParseMode.FULL,
    )


def _parse_manual(text: str) -> ParseOutcome:
    board = chess.Board()
    plies: list[Ply] = []
    failed_token: Optional[str] = None
    for raw in tokenize_movetext(text):
        if raw in RESULT_TOKENS:
            break
        token = normalize_san_token(raw)
        if not token:
            continue
        if token in RESULT_TOKENS:
            break
        try:
            move = board.parse_san(token)
        except ValueError:
            failed_token = _MOVE_NUMBER_RE.sub("", raw.strip())
            break
        plies.append(_ply(board, move))

    error = None
    if failed_token is not None:
        error = f"invalid token {failed_token}"
    elif not plies:
        error = "no moves could be applied"
    return ParseOutcome(
        final_position=board.fen(),
        moves=plies,
        applied_move_count=len(plies),
        failed_token=failed_token,
        parse_mode=ParseMode.PARTIAL,
        error=error,
    )


def parse_movetext(text: Optional[str]) -> ParseOutcome:
    """
    Parse movetext (optionally with PGN headers) into plies and a final FEN.

    Empty input is "no data yet", not an error: no position, no moves, no error.
    Never raises on malformed text; the outcome degrades to ``partial``.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        PARSE_OUTCOMES.labels(mode="empty").inc()
        return ParseOutcome()

    outcome = _parse_full(trimmed)
    if outcome is None:
        outcome = _parse_manual(trimmed)
    PARSE_OUTCOMES.labels(mode=outcome.parse_mode.value).inc()
    return outcome


def replay_san(moves: list[str]) -> ParseOutcome:
    """Replay an already-split SAN list (manifest and JSON feeds)."""
    return parse_movetext(" ".join(moves))
