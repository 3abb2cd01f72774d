"""Amount parsing for extracted financial fields.

Extraction agents return amounts as the strings they read from the page
("1.234,56", "€ 99.99", "-12,00", "1 234.56 EUR").  Everything that compares
or adds amounts goes through ``parse_amount`` so arithmetic is done on
``Decimal`` and never on floats.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

_CURRENCY_NOISE = re.compile(r"[€$£\s ']|EUR|USD|GBP", re.IGNORECASE)
_NUMERIC = re.compile(r"^[+-]?[\d.,]+$")
# One leading group of 1-3 digits followed by a single 3-digit group
_THOUSANDS_GROUP = re.compile(r"^[+-]?[1-9]\d{0,2}[.,]\d{3}$")
_PLAIN_DECIMAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")

CENT = Decimal("0.01")


def parse_amount(value: str | float | int | Decimal | None) -> Decimal | None:
    """Parse an amount to Decimal, or None if it is missing or unreadable.

    Both European ("1.234,56") and English ("1,234.56") notation are
    accepted. A lone separator followed by exactly three digits is a
    thousands grouping only when the leading group has one to three digits
    ("1.234"); otherwise it is the decimal mark ("1210.000", "0.500").
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = _CURRENCY_NOISE.sub("", value)
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    cleaned = cleaned.strip("()")
    if cleaned.endswith("-") and cleaned[:1] not in "+-":
        # Trailing sign ("12,00-") as printed on some credit notes
        negative = True
        cleaned = cleaned[:-1]
    if not cleaned or not _NUMERIC.match(cleaned):
        return None

    last_dot = cleaned.rfind(".")
    last_comma = cleaned.rfind(",")
    decimal_pos = max(last_dot, last_comma)

    if decimal_pos == -1:
        normalized = cleaned
    elif last_dot != -1 and last_comma != -1:
        # Both present: the later one is the decimal mark
        integer_part = re.sub(r"[.,]", "", cleaned[:decimal_pos])
        normalized = f"{integer_part}.{cleaned[decimal_pos + 1:]}"
    else:
        separator = cleaned[decimal_pos]
        if cleaned.count(separator) > 1 or _THOUSANDS_GROUP.match(cleaned):
            # Only thousands separators ("1.234.567", "1,234")
            normalized = cleaned.replace(separator, "")
        else:
            normalized = cleaned.replace(separator, ".")

    try:
        amount = Decimal(normalized)
    except InvalidOperation:
        return None
    return -amount if negative else amount


def parse_decimal(value: str | float | int | Decimal | None) -> Decimal | None:
    """Parse a quantity or unit price; a comma is only ever a decimal mark.

    Unlike amounts, quantities ("2.500" kg) and unit prices ("1.459" per
    litre) routinely carry three or more decimals, so no separator is read
    as a thousands grouping.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = _CURRENCY_NOISE.sub("", value)
    if cleaned.count(",") == 1 and "." not in cleaned:
        cleaned = cleaned.replace(",", ".")
    if not _PLAIN_DECIMAL.match(cleaned):
        return None
    return Decimal(cleaned)


def amounts_equal(a: Decimal | None, b: Decimal | None, epsilon: Decimal) -> bool:
    """Both present and within epsilon of each other."""
    if a is None or b is None:
        return False
    return abs(a - b) <= epsilon


def format_amount(amount: Decimal | None) -> str:
    if amount is None:
        return "n/a"
    return str(amount.quantize(CENT))


def parse_iso_date(value: str | None) -> date | None:
    """Parse a YYYY-MM-DD date; anything else is treated as unknown."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None
