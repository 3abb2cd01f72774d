"""Pure validation rules used by the auditor.

Every function takes already-parsed values and returns one ``AuditCheck``.
None of them perform I/O, so the same input always yields the same check.

  Math:       subtotal + VAT = total, line item arithmetic
  Checksums:  IBAN (ISO 13616 mod-97), OGM / RF payment references (mod-97)
  VAT rate:   implied rate vs the jurisdiction's standard rates
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from autopilot.modules.processing.agent_schemas import AuditCheck, CheckType
from autopilot.modules.processing.agents.vat_rules import VatJurisdiction, format_rate
from autopilot.modules.processing.money import format_amount

# Totals printed on a document are rounded per line; allow two cents of drift
ROUNDING_TOLERANCE = Decimal("0.02")


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------


def verify_totals(
    subtotal: Decimal | None,
    vat_amount: Decimal | None,
    total: Decimal | None,
    *,
    field: str = "totalAmount",
    tolerance: Decimal = ROUNDING_TOLERANCE,
) -> AuditCheck:
    """Subtotal + VAT must equal the total."""
    if subtotal is None or vat_amount is None or total is None:
        missing = [
            name for name, value in
            (("subtotal", subtotal), ("vat", vat_amount), ("total", total))
            if value is None
        ]
        return AuditCheck.incomplete(
            CheckType.MATH, field,
            f"Cannot verify totals, missing: {', '.join(missing)}",
        )

    expected = subtotal + vat_amount
    difference = abs(expected - total)
    if difference <= tolerance:
        return AuditCheck.passed(
            CheckType.MATH, field,
            f"{format_amount(subtotal)} + {format_amount(vat_amount)} = {format_amount(total)}",
        )

    return AuditCheck.failed(
        CheckType.MATH, field,
        f"Subtotal {format_amount(subtotal)} + VAT {format_amount(vat_amount)} = "
        f"{format_amount(expected)}, but total reads {format_amount(total)} "
        f"(off by {format_amount(difference)})",
        hint="Re-read subtotal, VAT and total in the totals block; check for misread digits",
        expected=format_amount(expected),
        actual=format_amount(total),
    )


def verify_line_items(
    line_totals: list[Decimal],
    subtotal: Decimal | None,
    *,
    field: str = "lineItems",
) -> AuditCheck:
    """Sum of line totals must equal the subtotal."""
    if subtotal is None or not line_totals:
        return AuditCheck.incomplete(
            CheckType.MATH, field, "Cannot verify line items against subtotal",
        )

    line_sum = sum(line_totals, Decimal("0"))
    # Each line may carry its own rounding
    tolerance = max(ROUNDING_TOLERANCE, Decimal("0.01") * len(line_totals))
    if abs(line_sum - subtotal) <= tolerance:
        return AuditCheck.passed(
            CheckType.MATH, field,
            f"{len(line_totals)} line items sum to subtotal {format_amount(subtotal)}",
        )

    return AuditCheck.failed(
        CheckType.MATH, field,
        f"Line items sum to {format_amount(line_sum)} but subtotal reads {format_amount(subtotal)}",
        hint="A line may be missing, duplicated, or its total misread",
        expected=format_amount(subtotal),
        actual=format_amount(line_sum),
    )


def verify_line_item_calculation(
    quantity: Decimal | None,
    unit_price: Decimal | None,
    line_total: Decimal | None,
    line_index: int,
) -> AuditCheck:
    """quantity x unit price must equal the line total."""
    field = f"lineItems[{line_index}]"
    if quantity is None or unit_price is None or line_total is None:
        return AuditCheck.incomplete(
            CheckType.MATH, field, f"Line {line_index + 1}: quantity, unit price or total missing",
        )

    expected = (quantity * unit_price).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if abs(expected - line_total) <= ROUNDING_TOLERANCE:
        return AuditCheck.passed(CheckType.MATH, field, f"Line {line_index + 1} arithmetic is consistent")

    return AuditCheck.failed(
        CheckType.MATH, field,
        f"Line {line_index + 1}: {quantity} x {unit_price} = "
        f"{format_amount(expected)}, but line total reads {format_amount(line_total)}",
        hint="Re-read quantity, unit price and line total on this row",
        expected=format_amount(expected),
        actual=format_amount(line_total),
    )


# ---------------------------------------------------------------------------
# IBAN (ISO 13616)
# ---------------------------------------------------------------------------

IBAN_LENGTHS: dict[str, int] = {
    "AT": 20, "BE": 16, "CH": 21, "DE": 22, "DK": 18, "ES": 24, "FI": 18,
    "FR": 27, "GB": 22, "IE": 22, "IT": 27, "LU": 20, "NL": 18, "NO": 15,
    "PL": 28, "PT": 25, "SE": 24,
}

_IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{10,30}$")


def normalize_iban(value: str) -> str:
    cleaned = re.sub(r"[\s\-.]", "", value).upper()
    if cleaned.startswith("IBAN"):
        cleaned = cleaned[4:]
    return cleaned


def _mod97(alphanumeric: str) -> int:
    """Letters become 10..35, then the whole number is taken mod 97."""
    digits = "".join(str(int(ch, 36)) for ch in alphanumeric)
    return int(digits) % 97


def is_valid_iban(value: str) -> bool:
    iban = normalize_iban(value)
    if not _IBAN_SHAPE.match(iban):
        return False
    expected_length = IBAN_LENGTHS.get(iban[:2])
    if expected_length is not None and len(iban) != expected_length:
        return False
    return _mod97(iban[4:] + iban[:4]) == 1


def audit_iban(value: str | None, *, field: str = "iban") -> AuditCheck:
    if not value or not value.strip():
        return AuditCheck.incomplete(CheckType.CHECKSUM_IBAN, field, "No IBAN extracted")

    iban = normalize_iban(value)
    if is_valid_iban(iban):
        return AuditCheck.passed(CheckType.CHECKSUM_IBAN, field, f"IBAN {iban} checksum valid")

    expected_length = IBAN_LENGTHS.get(iban[:2])
    if expected_length is not None and len(iban) != expected_length:
        message = f"IBAN {iban} has {len(iban)} characters, expected {expected_length} for {iban[:2]}"
    else:
        message = f"IBAN {iban} fails the mod-97 checksum"

    return AuditCheck.failed(
        CheckType.CHECKSUM_IBAN, field, message,
        hint="Re-read the bank details; watch for 0/O and 1/I confusion and missing characters",
        actual=value,
    )


# ---------------------------------------------------------------------------
# Structured payment references (Belgian OGM/VCS, ISO 11649 RF)
# ---------------------------------------------------------------------------

_OGM_CHARS = re.compile(r"^[\d\s/+*.\-]+$")


def ogm_check_digits(base: str) -> int:
    """Check digits for the first ten digits of an OGM (0 maps to 97)."""
    remainder = int(base) % 97
    return remainder or 97


def _looks_like_ogm(value: str) -> bool:
    if "+++" in value or "***" in value:
        return True
    digits = re.sub(r"\D", "", value)
    return bool(_OGM_CHARS.match(value)) and len(digits) == 12


def audit_payment_reference(value: str | None, *, field: str = "paymentReference") -> AuditCheck:
    if not value or not value.strip():
        return AuditCheck.incomplete(CheckType.CHECKSUM_OGM, field, "No payment reference extracted")

    compact = re.sub(r"\s", "", value).upper()
    if compact.startswith("RF"):
        return _audit_creditor_reference(compact, field)

    if not _looks_like_ogm(value):
        return AuditCheck.incomplete(
            CheckType.CHECKSUM_OGM, field,
            "Payment reference is free text, not a structured communication",
        )

    digits = re.sub(r"\D", "", value)
    if len(digits) != 12:
        return AuditCheck.failed(
            CheckType.CHECKSUM_OGM, field,
            f"Structured communication must contain 12 digits, found {len(digits)}",
            hint="Format is +++XXX/XXXX/XXXXX+++; re-read every digit",
            actual=value,
        )

    expected = ogm_check_digits(digits[:10])
    found = int(digits[10:])
    if expected == found:
        return AuditCheck.passed(CheckType.CHECKSUM_OGM, field, "Structured communication checksum valid")

    return AuditCheck.failed(
        CheckType.CHECKSUM_OGM, field,
        f"Structured communication check digits {found:02d} do not match computed {expected:02d}",
        hint="Common OCR confusions: 0/O, 1/I/l, 8/B, 5/S, 6/G",
        expected=f"{expected:02d}",
        actual=f"{found:02d}",
    )


def _audit_creditor_reference(reference: str, field: str) -> AuditCheck:
    if not re.match(r"^RF\d{2}[A-Z0-9]{1,21}$", reference):
        return AuditCheck.failed(
            CheckType.CHECKSUM_OGM, field,
            f"Creditor reference {reference} is malformed",
            hint="Format is RF + 2 check digits + up to 21 characters",
            actual=reference,
        )
    if _mod97(reference[4:] + reference[:4]) == 1:
        return AuditCheck.passed(CheckType.CHECKSUM_OGM, field, "Creditor reference checksum valid")
    return AuditCheck.failed(
        CheckType.CHECKSUM_OGM, field,
        f"Creditor reference {reference} fails the mod-97 checksum",
        hint="Re-read the RF reference character by character",
        actual=reference,
    )


# ---------------------------------------------------------------------------
# VAT rate
# ---------------------------------------------------------------------------


def implied_rate_bp(subtotal: Decimal, vat_amount: Decimal) -> int:
    ratio = abs(vat_amount) / abs(subtotal) * 10000
    return int(ratio.to_integral_value(rounding=ROUND_HALF_UP))


def verify_vat_rate(
    subtotal: Decimal | None,
    vat_amount: Decimal | None,
    *,
    jurisdiction: VatJurisdiction,
    document_date: date | None,
    category: str | None,
    tolerance_bp: int = 50,
    field: str = "vatAmount",
) -> AuditCheck:
    """The VAT amount must correspond to one of the jurisdiction's standard rates.

    A rate off every standard rate is only a warning: foreign VAT, mixed
    rates and rounding on small amounts all produce odd implied rates.
    """
    if subtotal is None or vat_amount is None:
        return AuditCheck.incomplete(CheckType.VAT_RATE, field, "Cannot derive VAT rate, subtotal or VAT missing")

    if subtotal == 0:
        if vat_amount == 0:
            return AuditCheck.passed(CheckType.VAT_RATE, field, "Zero amounts, 0% VAT")
        return AuditCheck.incomplete(CheckType.VAT_RATE, field, "Cannot derive VAT rate from a zero subtotal")

    rate_bp = implied_rate_bp(subtotal, vat_amount)
    nearest = jurisdiction.nearest_rate(rate_bp)
    deviation = abs(rate_bp - nearest)

    if deviation > tolerance_bp:
        return AuditCheck.warning(
            CheckType.VAT_RATE, field,
            f"Implied VAT rate {format_rate(rate_bp)} is not a standard {jurisdiction.name} rate",
            hint=(
                f"Nearest standard rate is {format_rate(nearest)} ({deviation} bp off). "
                f"Standard rates: {jurisdiction.rates_label}. Re-check subtotal and VAT amount, "
                "or the document may carry several rates or foreign VAT."
            ),
            expected=format_rate(nearest),
            actual=format_rate(rate_bp),
        )

    if not jurisdiction.has_rules_for(nearest):
        return AuditCheck.passed(
            CheckType.VAT_RATE, field,
            f"VAT rate {format_rate(nearest)} is a standard {jurisdiction.name} rate",
        )

    rule = jurisdiction.rule_for(nearest, category, document_date)
    if rule is not None:
        message = rule.message
        if document_date is None:
            message += "; document date unknown"
        return AuditCheck.passed(CheckType.VAT_RATE, field, message)

    if category:
        detail = f"category '{category}' is not a typical {format_rate(nearest)} category"
    else:
        detail = "no category to confirm eligibility"
    return AuditCheck.passed(
        CheckType.VAT_RATE, field,
        f"VAT rate {format_rate(nearest)} is a standard {jurisdiction.name} rate ({detail})",
    )
