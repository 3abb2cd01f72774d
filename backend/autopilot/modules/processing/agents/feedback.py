"""Feedback prompts for the self-correction loop.

A generic "try again" does not fix extractions.  Each failed check is
turned into a focused instruction block telling the model:

  1. WHAT went wrong (the check message, expected vs found)
  2. WHERE to look (totals, payment section, bank details, header)
  3. WHICH misreads are typical for that kind of field

Critical failures come first, then warnings.  The last attempt is flagged
as final so the model takes extra care.
"""

from __future__ import annotations

from collections import defaultdict

from autopilot.modules.processing.agent_schemas import AuditCheck, AuditReport, CheckType
from autopilot.modules.processing.agents.validators import IBAN_LENGTHS
from autopilot.modules.processing.agents.vat_rules import BELGIUM, VatJurisdiction

_RULE = "=" * 70
_THIN_RULE = "-" * 70


def build_feedback_prompt(
    audit_report: AuditReport,
    attempt: int,
    max_retries: int,
    jurisdiction: VatJurisdiction = BELGIUM,
) -> str:
    """Full correction prompt for one retry attempt."""
    lines = [
        _RULE,
        f"CORRECTION REQUIRED (Attempt {attempt} of {max_retries})",
        _RULE,
        "",
    ]

    failures = audit_report.critical_failures + audit_report.warnings
    if not failures:
        lines.append("No specific failures to address.")
        return "\n".join(lines) + "\n"

    lines += [
        "Your previous extraction failed validation. Please carefully address",
        f"the following {len(failures)} issue(s):",
        "",
    ]
    for index, check in enumerate(failures, 1):
        lines += [
            _THIN_RULE,
            f"Issue {index}: {check.type.display_name}",
            _THIN_RULE,
            "",
            build_check_feedback(check, jurisdiction),
            "",
        ]

    lines += [
        _RULE,
        "",
        "IMPORTANT: Focus ONLY on the fields mentioned above. Re-read those",
        "specific sections of the document and correct the errors.",
    ]
    if attempt >= max_retries:
        lines += ["", "This is your FINAL attempt. Take extra care to verify each field."]
    return "\n".join(lines) + "\n"


def build_check_feedback(check: AuditCheck, jurisdiction: VatJurisdiction = BELGIUM) -> str:
    """Instruction block for a single check."""
    if check.type == CheckType.MATH:
        lines = _math_feedback(check)
    elif check.type == CheckType.CHECKSUM_OGM:
        lines = _ogm_feedback(check)
    elif check.type == CheckType.CHECKSUM_IBAN:
        lines = _iban_feedback(check, jurisdiction)
    elif check.type == CheckType.VAT_RATE:
        lines = _vat_rate_feedback(check, jurisdiction)
    elif check.type == CheckType.COMPANY_EXISTS:
        lines = _company_exists_feedback(check, jurisdiction)
    else:
        lines = _company_name_feedback(check)

    if check.hint:
        lines += ["", f"Hint: {check.hint}"]
    return "\n".join(lines)


def build_correction_summary(failures: list[AuditCheck]) -> str:
    """'Fields requiring correction' list grouped by check type."""
    by_type: dict[CheckType, list[str]] = defaultdict(list)
    for check in failures:
        if check.field not in by_type[check.type]:
            by_type[check.type].append(check.field)

    lines = ["Fields requiring correction:"]
    for check_type, fields in by_type.items():
        lines.append(f"  - {check_type.display_name}: {', '.join(fields)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Per-check blocks
# ---------------------------------------------------------------------------


def _expected_found(check: AuditCheck, expected_label: str, found_label: str) -> list[str]:
    if check.expected is None or check.actual is None:
        return []
    return [f"{expected_label}: {check.expected}", f"{found_label}: {check.actual}", ""]


def _math_feedback(check: AuditCheck) -> list[str]:
    return [
        f"MATH ERROR in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "SPECIFIC ACTION: Re-read the TOTALS section of the document.",
        "",
        *_expected_found(check, "Expected value", "Your extraction"),
        "Common causes of math errors:",
        "  - Misread digits (1/7, 0/6, 5/S)",
        "  - Decimal point in wrong position (121.00 vs 1210.0)",
        "  - Missed a negative sign",
        "  - Confused net/gross amounts",
        "",
        "Please re-extract subtotal, VAT amount, and total, paying close",
        "attention to each digit.",
    ]


def _ogm_feedback(check: AuditCheck) -> list[str]:
    return [
        f"OGM CHECKSUM FAILED in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "SPECIFIC ACTION: Re-read the PAYMENT SECTION of the document.",
        "Look for the structured communication (+++XXX/XXXX/XXXXX+++ format).",
        "",
        *_expected_found(check, "Expected check digit", "Found check digit"),
        "Common OCR mistakes in payment references:",
        "  - 0 / O (zero vs letter O)",
        "  - 1 / I / l (one vs letter I vs lowercase L)",
        "  - 8 / B (eight vs letter B)",
        "  - 5 / S (five vs letter S)",
        "  - 6 / G (six vs letter G)",
        "",
        "Please re-extract the payment reference, checking each character",
        "carefully against the document.",
    ]


def _iban_feedback(check: AuditCheck, jurisdiction: VatJurisdiction) -> list[str]:
    lines = [
        f"IBAN CHECKSUM FAILED in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "SPECIFIC ACTION: Re-read the BANK DETAILS section of the document.",
        "",
    ]
    expected_length = IBAN_LENGTHS.get(jurisdiction.country)
    if expected_length is not None:
        lines.append(
            f"{jurisdiction.name} IBAN format: {jurisdiction.country} + 2 check digits + "
            f"{expected_length - 4} characters = {expected_length} characters"
        )
    if jurisdiction.iban_example:
        lines.append(f"Example: {jurisdiction.iban_example}")
    lines.append("")
    if check.actual is not None:
        lines.append(f"Your extraction: {check.actual}")
        length = len(check.actual.replace(" ", ""))
        if (
            expected_length is not None
            and check.actual.upper().startswith(jurisdiction.country)
            and length != expected_length
        ):
            lines.append(
                f"Length: {length} characters (should be {expected_length} for {jurisdiction.name} IBAN)"
            )
        lines.append("")
    lines += [
        "Common OCR mistakes in IBANs:",
        "  - 0 / O (zero vs letter O)",
        "  - 1 / I (one vs letter I)",
        "  - Missing or extra characters",
        "",
        "Please re-extract the IBAN, counting all characters.",
    ]
    return lines


def _vat_rate_feedback(check: AuditCheck, jurisdiction: VatJurisdiction) -> list[str]:
    return [
        f"UNUSUAL VAT RATE in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "SPECIFIC ACTION: Verify the amounts in the TOTALS section.",
        "",
        f"{jurisdiction.name} standard VAT rates are: {jurisdiction.rates_label}",
        "",
        *_expected_found(check, "Expected rate", "Implied rate from extraction"),
        "This could indicate:",
        "  - Misread amounts (subtotal, VAT, or total)",
        f"  - Foreign invoice (non-{jurisdiction.name} VAT)",
        "  - Multiple VAT rates on one invoice (needs itemized extraction)",
        "",
        "Please re-check:",
        "  1. Subtotal (excl. VAT)",
        "  2. VAT amount",
        "  3. Total (incl. VAT)",
    ]


def _company_exists_feedback(check: AuditCheck, jurisdiction: VatJurisdiction) -> list[str]:
    lines = [
        f"COMPANY NOT FOUND in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "SPECIFIC ACTION: Re-read the VAT NUMBER on the document.",
        "",
    ]
    if check.actual is not None:
        lines += [f"Your extraction: {check.actual}", ""]
    lines += [
        f"The VAT number you extracted was not found in the {jurisdiction.registry_name}.",
        "",
        "Common issues:",
        f"  - Missing '{jurisdiction.country}' prefix",
        "  - Incorrect digits (verify against document)",
        f"  - Foreign company (non-{jurisdiction.name} VAT number)",
        "  - Misread characters (0/O, 1/I)",
        "",
    ]
    if jurisdiction.vat_number_format:
        lines += [f"{jurisdiction.name} VAT format: {jurisdiction.vat_number_format}", ""]
    lines.append("Please re-extract the VAT number from the document header or footer.")
    return lines


def _company_name_feedback(check: AuditCheck) -> list[str]:
    return [
        f"COMPANY NAME MISMATCH in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        *_expected_found(check, "Official name (from registry)", "Your extraction"),
        "The extracted company name doesn't match the official registry name.",
        "",
        "Possible reasons:",
        "  - Commercial name vs legal name (both may be correct)",
        "  - OCR errors in the name",
        "  - Abbreviated name on document",
        "",
        "Consider using the official name from the registry for consistency.",
    ]
