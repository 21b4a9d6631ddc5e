"""
Movetext parser tests.

Run: pytest backend/tests/test_pgn.py -v
"""
from __future__ import annotations

import pytest

from notation.pgn import (
    START_FEN,
    is_start_position,
    move_tokens,
    normalize_san_token,
    parse_movetext,
    replay_san,
    side_to_move_from_fen,
    tokenize_movetext,
)
from shared.models.enums import ParseMode, Side

AFTER_NF3 = "rnbqkbnr/pppp1ppp/8/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R b KQkq - 1 2"

ANNOTATED = """[Event "Tata Steel Masters"]
[White "Giri, Anish"]
[Black "Firouzja, Alireza"]
[Result "*"]

1. e4 {[%clk 1:40:00]} e5 (1... c5 2. Nf3 d6) 2. Nf3 $1 {book} Nc6 ; main line
3. Bb5 *"""


# ── Well-formed movetext ────────────────────────────────────────────────

def test_three_plies_parse_fully() -> None:
    outcome = parse_movetext("1. e4 e5 2. Nf3")
    assert outcome.san_moves == ["e4", "e5", "Nf3"]
    assert outcome.applied_move_count == 3
    assert outcome.failed_token is None
    assert outcome.parse_mode == ParseMode.FULL
    assert outcome.error is None
    assert outcome.final_position == AFTER_NF3


def test_plies_carry_move_number_and_side() -> None:
    outcome = parse_movetext("1. e4 e5 2. Nf3")
    assert [(p.move_number, p.side) for p in outcome.moves] == [
        (1, Side.WHITE),
        (1, Side.BLACK),
        (2, Side.WHITE),
    ]
    assert outcome.moves[-1].fen == outcome.final_position


def test_headers_comments_variations_and_nags_are_ignored() -> None:
    outcome = parse_movetext(ANNOTATED)
    assert outcome.san_moves == ["e4", "e5", "Nf3", "Nc6", "Bb5"]
    assert outcome.parse_mode == ParseMode.FULL


def test_result_token_terminates_scanning() -> None:
    outcome = parse_movetext("1. e4 e5 1-0")
    assert outcome.applied_move_count == 2
    assert "1-0" not in outcome.san_moves


def test_full_game_to_mate() -> None:
    outcome = parse_movetext("1. f3 e5 2. g4 Qh4# 0-1")
    assert outcome.san_moves[-1] == "Qh4#"
    assert outcome.parse_mode == ParseMode.FULL


# ── Manual recovery ─────────────────────────────────────────────────────

def test_unrecognized_token_yields_partial() -> None:
    outcome = parse_movetext("1. e4 e5 2. Zz9")
    assert outcome.san_moves == ["e4", "e5"]
    assert outcome.applied_move_count == 2
    assert outcome.failed_token == "Zz9"
    assert outcome.parse_mode == ParseMode.PARTIAL
    assert outcome.error == "invalid token Zz9"


def test_failed_token_drops_attached_move_number() -> None:
    outcome = parse_movetext("1.e4 e5 2.Zz9")
    assert outcome.san_moves == ["e4", "e5"]
    assert outcome.failed_token == "Zz9"
    assert outcome.error == "invalid token Zz9"

    black = parse_movetext("1.e4 1...Zz9")
    assert black.failed_token == "Zz9"


def test_illegal_move_stops_replay_at_that_token() -> None:
    outcome = parse_movetext("1. e4 e5 2. Ke3 Nc6")
    assert outcome.san_moves == ["e4", "e5"]
    assert outcome.failed_token == "Ke3"
    assert outcome.parse_mode == ParseMode.PARTIAL


def test_illegal_first_move_keeps_start_position() -> None:
    outcome = parse_movetext("1. e5")
    assert outcome.moves == []
    assert outcome.failed_token == "e5"
    assert outcome.final_position == START_FEN


def test_castling_written_with_zeros_is_recovered() -> None:
    outcome = parse_movetext("1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5 4. 0-0 Zz9")
    assert outcome.san_moves[-1] == "O-O"
    assert outcome.failed_token == "Zz9"


# ── Empty input ─────────────────────────────────────────────────────────

@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
def test_empty_input_is_no_data_not_an_error(text: str | None) -> None:
    outcome = parse_movetext(text)
    assert outcome.final_position is None
    assert outcome.moves == []
    assert outcome.applied_move_count == 0
    assert outcome.error is None
    assert outcome.failed_token is None


# ── Properties ──────────────────────────────────────────────────────────

SAMPLES = [
    "1. e4 e5 2. Nf3",
    "1. e4 e5 2. Zz9",
    "1. d4 d5 2. c4 e6 3. Nc3 Nf6 4. Bg5 Be7 *",
    ANNOTATED,
    "garbage text with no moves",
    "1. e4 {unterminated comment",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_parsing_is_idempotent(text: str) -> None:
    assert parse_movetext(text) == parse_movetext(text)


@pytest.mark.parametrize("text", SAMPLES)
def test_partial_parse_invariant(text: str) -> None:
    outcome = parse_movetext(text)
    assert outcome.applied_move_count == len(outcome.moves)
    if outcome.failed_token is not None:
        assert outcome.parse_mode == ParseMode.PARTIAL


def test_replay_san_matches_movetext_parse() -> None:
    assert replay_san(["e4", "e5", "Nf3"]).final_position == AFTER_NF3


# ── Helpers ─────────────────────────────────────────────────────────────

def test_normalize_san_token() -> None:
    assert normalize_san_token("12.Nf3") == "Nf3"
    assert normalize_san_token("12...Nf6") == "Nf6"
    assert normalize_san_token("0-0-0") == "O-O-O"
    assert normalize_san_token("Qxf7#") == "Qxf7"
    assert normalize_san_token("e4!?") == "e4"


def test_tokenize_drops_nested_variations() -> None:
    assert tokenize_movetext("1. e4 (1. d4 (1. c4) d5) e5") == ["1.", "e4", "e5"]


def test_move_tokens_stop_at_result() -> None:
    assert move_tokens("1. e4 e5 1/2-1/2 2. Nf3") == ["e4", "e5"]


def test_start_position_ignores_move_counters() -> None:
    assert is_start_position(START_FEN)
    assert is_start_position(START_FEN.replace(" 0 1", " 4 3"))
    assert not is_start_position(AFTER_NF3)
    assert not is_start_position(None)


def test_side_to_move_from_fen() -> None:
    assert side_to_move_from_fen(START_FEN) == Side.WHITE
    assert side_to_move_from_fen(AFTER_NF3) == Side.BLACK
    assert side_to_move_from_fen("broken") is None
