"""Unit tests for amount and date parsing."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from autopilot.modules.processing.money import (
    amounts_equal,
    format_amount,
    parse_amount,
    parse_decimal,
    parse_iso_date,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("€ 99.99", Decimal("99.99")),
        ("1 234.56 EUR", Decimal("1234.56")),
        ("-12,00", Decimal("-12.00")),
        ("(45,00)", Decimal("-45.00")),
        ("1.234.567", Decimal("1234567")),
        ("1,234", Decimal("1234")),
        ("12,5", Decimal("12.5")),
        ("1210.000", Decimal("1210.000")),
        ("0.500", Decimal("0.500")),
        ("12.345", Decimal("12345")),
        ("12,00-", Decimal("-12.00")),
    ],
)
def test_parse_amount_notations(raw: str, expected: Decimal) -> None:
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "12a", "€"])
def test_parse_amount_unreadable_is_none(raw) -> None:
    assert parse_amount(raw) is None


def test_parse_amount_numbers_go_through_str() -> None:
    """Floats are converted via str so 0.1 stays 0.1."""
    assert parse_amount(0.1) == Decimal("0.1")
    assert parse_amount(7) == Decimal("7")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("2.500", Decimal("2.5")), ("1,459", Decimal("1.459")), ("1.459", Decimal("1.459")), ("8", Decimal("8")), (3, Decimal("3"))],
)
def test_parse_decimal_never_reads_thousands(raw, expected: Decimal) -> None:
    assert parse_decimal(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "1.234,5", "nan", "two"])
def test_parse_decimal_unreadable_is_none(raw) -> None:
    assert parse_decimal(raw) is None

def test_amounts_equal_within_epsilon() -> None:
    eps = Decimal("0.005")
    assert amounts_equal(Decimal("1.000"), Decimal("1.004"), eps)
    assert not amounts_equal(Decimal("1.00"), Decimal("1.01"), eps)
    assert not amounts_equal(None, Decimal("1.00"), eps)


def test_format_amount() -> None:
    assert format_amount(Decimal("12.5")) == "12.50"
    assert format_amount(None) == "n/a"


def test_parse_iso_date() -> None:
    assert parse_iso_date("2026-03-01") == date(2026, 3, 1)
    assert parse_iso_date("2026-03-01T10:00:00") == date(2026, 3, 1)
    assert parse_iso_date("01/03/2026") is None
    assert parse_iso_date(None) is None
