"""Unit tests for self-correction feedback prompts."""

from __future__ import annotations

from autopilot.modules.processing.agent_schemas import AuditCheck, AuditReport, CheckType
from autopilot.modules.processing.agents.feedback import (
    build_check_feedback,
    build_correction_summary,
    build_feedback_prompt,
)
from autopilot.modules.processing.agents.vat_rules import NETHERLANDS

MATH_FAILURE = AuditCheck.failed(
    CheckType.MATH, "totalAmount",
    "Subtotal 100.00 + VAT 21.00 = 121.00, but total reads 127.00 (off by 6.00)",
    hint="Re-read subtotal, VAT and total in the totals block",
    expected="121.00",
    actual="127.00",
)
IBAN_FAILURE = AuditCheck.failed(
    CheckType.CHECKSUM_IBAN, "iban", "IBAN BE6853900754703 has 15 characters, expected 16 for BE",
    actual="BE6853900754703",
)
VAT_WARNING = AuditCheck.warning(
    CheckType.VAT_RATE, "totalVatAmount", "Implied VAT rate 18% is not a standard Belgian rate",
    expected="21%", actual="18%",
)


def test_prompt_lists_critical_failures_before_warnings() -> None:
    report = AuditReport.from_checks([VAT_WARNING, MATH_FAILURE, IBAN_FAILURE])

    prompt = build_feedback_prompt(report, attempt=1, max_retries=2)

    assert "CORRECTION REQUIRED (Attempt 1 of 2)" in prompt
    assert "the following 3 issue(s)" in prompt
    assert prompt.index("Issue 1: Mathematical Verification") < prompt.index("Issue 2: IBAN Bank Account")
    assert prompt.index("Issue 2: IBAN Bank Account") < prompt.index("Issue 3: VAT Rate")
    assert "IMPORTANT: Focus ONLY on the fields mentioned above" in prompt
    assert "FINAL attempt" not in prompt


def test_last_attempt_is_flagged() -> None:
    report = AuditReport.from_checks([MATH_FAILURE])
    prompt = build_feedback_prompt(report, attempt=2, max_retries=2)
    assert "This is your FINAL attempt. Take extra care to verify each field." in prompt


def test_prompt_without_failures() -> None:
    report = AuditReport.from_checks([AuditCheck.passed(CheckType.MATH, "totalAmount", "ok")])
    assert "No specific failures to address." in build_feedback_prompt(report, 1, 2)


def test_math_block() -> None:
    block = build_check_feedback(MATH_FAILURE)
    assert "MATH ERROR in 'totalAmount'" in block
    assert "Expected value: 121.00" in block
    assert "Your extraction: 127.00" in block
    assert block.endswith("Hint: Re-read subtotal, VAT and total in the totals block")


def test_iban_block_reports_length() -> None:
    block = build_check_feedback(IBAN_FAILURE)
    assert "IBAN CHECKSUM FAILED in 'iban'" in block
    assert "Length: 15 characters (should be 16 for Belgian IBAN)" in block


def test_iban_block_follows_jurisdiction() -> None:
    dutch = AuditCheck.failed(CheckType.CHECKSUM_IBAN, "iban", "invalid", actual="NL91ABNA041716430")

    block = build_check_feedback(dutch, NETHERLANDS)

    assert "Dutch IBAN format: NL + 2 check digits + 14 characters = 18 characters" in block
    assert "Length: 17 characters (should be 18 for Dutch IBAN)" in block
    assert "Belgian" not in block


def test_ogm_block() -> None:
    check = AuditCheck.failed(
        CheckType.CHECKSUM_OGM, "paymentReference", "check digits 03 do not match computed 02",
        expected="02", actual="03",
    )
    block = build_check_feedback(check)
    assert "OGM CHECKSUM FAILED" in block
    assert "Expected check digit: 02" in block
    assert "Found check digit: 03" in block


def test_vat_block_uses_jurisdiction_rates() -> None:
    assert "Belgian standard VAT rates are: 0%, 6%, 12%, 21%" in build_check_feedback(VAT_WARNING)
    assert "Dutch standard VAT rates are: 0%, 9%, 21%" in build_check_feedback(VAT_WARNING, NETHERLANDS)


def test_company_blocks() -> None:
    missing = AuditCheck.failed(CheckType.COMPANY_EXISTS, "vendorVatNumber", "not found", actual="BE0999999999")
    mismatch = AuditCheck.failed(
        CheckType.COMPANY_NAME, "vendorName", "does not match",
        expected="Acme Holding NV", actual="Acmee",
    )
    assert "COMPANY NOT FOUND in 'vendorVatNumber'" in build_check_feedback(missing)
    block = build_check_feedback(mismatch)
    assert "COMPANY NAME MISMATCH" in block
    assert "Official name (from registry): Acme Holding NV" in block


def test_company_not_found_block_names_the_registry() -> None:
    missing = AuditCheck.failed(CheckType.COMPANY_EXISTS, "vendorVatNumber", "not found", actual="NL123456789B01")

    belgian = build_check_feedback(missing)
    dutch = build_check_feedback(missing, NETHERLANDS)

    assert "not found in the Belgian registry (KBO/CBE)" in belgian
    assert "not found in the Dutch trade register (KVK)" in dutch
    assert "Missing 'NL' prefix" in dutch
    assert "KBO" not in dutch


def test_correction_summary_groups_by_type() -> None:
    second_math = MATH_FAILURE.model_copy(update={"field": "lineItems"})
    summary = build_correction_summary([MATH_FAILURE, second_math, IBAN_FAILURE])
    assert summary.splitlines() == [
        "Fields requiring correction:",
        "  - Mathematical Verification: totalAmount, lineItems",
        "  - IBAN Bank Account: iban",
    ]
