"""Tests for chat command helpers."""

from __future__ import annotations

from faction.commands import ActiveBoards, ReportBoard, parse_cash


def board() -> ReportBoard:
    return ReportBoard(entries=[], verified={})


def test_parse_cash_accepts_suffixes_and_separators():
    assert parse_cash("1,500,000") == 1_500_000
    assert parse_cash("$2m") == 2_000_000
    assert parse_cash("1.5K") == 1_500
    assert parse_cash("3b") == 3_000_000_000


def test_parse_cash_rejects_garbage_and_non_finite():
    assert parse_cash("lots") is None
    assert parse_cash("") is None
    assert parse_cash("inf") is None
    assert parse_cash("-inf") is None
    assert parse_cash("nan") is None
    assert parse_cash("1e400") is None


def test_active_boards_forget_oldest_past_limit():
    boards = ActiveBoards(limit=2)
    first, second, third = board(), board(), board()

    boards.remember(1, first)
    boards.remember(2, second)
    boards.remember(3, third)

    assert 1 not in boards
    assert boards.get(2) is second
    assert boards.get(3) is third


def test_active_boards_refresh_keeps_board():
    boards = ActiveBoards(limit=2)
    boards.remember(1, board())
    boards.remember(2, board())
    boards.remember(1, board())
    boards.remember(3, board())

    assert list(boards) == [1, 3]
