"""Тесты фильтрации и чистки распознанного текста."""

import pytest

from ocr_pool.services.pipeline import (
    ENGINE_INIT_FAILED,
    UNABLE_TO_OPEN,
    UNREADABLE,
    clean_text,
    filter_printable,
    is_sentinel,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("INVOICE", "INVOICE"),
        ("Total: 42.00 $\n", "Total: 42.00 $\n"),
        ("Счёт №5 INVOICE", " 5 INVOICE"),
        ("tab\there\r\n", "tabhere\n"),
        ("bell\x07 del\x7f", "bell del"),
        ("café ™", "caf "),
        ("", ""),
    ],
)
def test_filter_printable(raw: str, expected: str) -> None:
    assert filter_printable(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["INVOICE", "\x00\x01mixed\tтекст\r\n~", "\n\n  \n", "é" * 10, "a\x7fb"],
)
def test_filter_printable_is_idempotent(raw: str) -> None:
    once = filter_printable(raw)
    assert filter_printable(once) == once


def test_filter_keeps_only_ascii_printable_and_newline() -> None:
    text = "".join(chr(i) for i in range(0, 300))
    filtered = filter_printable(text)

    assert all(ch == "\n" or 32 <= ord(ch) <= 126 for ch in filtered)
    assert len(filtered) == 95 + 1


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  INVOICE \n\n", "INVOICE"),
        ("\n line one\nline two \n", "line one\nline two"),
        ("a\r\nb\tc", "a\nbc"),
        (" \n \n ", ""),
        # Внутренние пробелы не трогаем
        ("two  spaces", "two  spaces"),
    ],
)
def test_clean_text(raw: str, expected: str) -> None:
    assert clean_text(raw) == expected


def test_sentinels_are_recognized() -> None:
    assert is_sentinel(UNABLE_TO_OPEN)
    assert is_sentinel(ENGINE_INIT_FAILED)
    assert is_sentinel(UNREADABLE)
    assert not is_sentinel("INVOICE")
    assert not is_sentinel("[UNREADABLE] ")
