"""Unit tests for the feedback-driven self-correction loop."""

from __future__ import annotations

import pytest
from conftest import FakeExtractor

from autopilot.modules.processing.agent_schemas import (
    AuditCheck,
    AuditReport,
    CheckType,
    CorrectedOnRetry,
    NoRetryNeeded,
    StillFailing,
)
from autopilot.modules.processing.agents.auditor import AuditorAgent
from autopilot.modules.processing.agents.retry import FeedbackDrivenRetryAgent, changed_fields


@pytest.fixture
def auditor() -> AuditorAgent:
    return AuditorAgent()


@pytest.fixture
def broken(make_invoice):
    """Invoice whose total does not add up."""
    return make_invoice(total_amount="1270.00")


async def test_corrected_on_second_attempt(images, auditor, broken, make_invoice) -> None:
    extractor = FakeExtractor(corrections=[make_invoice(total_amount="1280.00"), make_invoice()])
    report = await auditor.audit(broken)

    result = await FeedbackDrivenRetryAgent(extractor, auditor, max_retries=2).attempt_correction(
        images, broken, report,
    )

    assert isinstance(result, CorrectedOnRetry)
    assert result.attempt == 2
    assert result.corrected_fields == ["totalAmount"]
    assert [c.type for c in result.original_failures] == [CheckType.MATH]
    assert result.data.total_amount == "1210.00"

    first, second = extractor.feedback
    assert "CORRECTION REQUIRED (Attempt 1 of 2)" in first
    assert "MATH ERROR in 'totalAmount'" in first
    assert "FINAL attempt" in second


async def test_budget_exhausted(images, auditor, broken, make_invoice) -> None:
    extractor = FakeExtractor(corrections=[broken, make_invoice(total_amount="1290.00")])
    report = await auditor.audit(broken)

    result = await FeedbackDrivenRetryAgent(extractor, auditor, max_retries=2).attempt_correction(
        images, broken, report,
    )

    assert isinstance(result, StillFailing)
    assert result.attempts == 2
    assert len(result.remaining_failures) == 1
    assert not result.last_audit_report.is_passed
    # The latest candidate is carried forward
    assert result.data.total_amount == "1290.00"
    assert result.errors == []


async def test_extractor_errors_are_recorded(images, auditor, broken) -> None:
    extractor = FakeExtractor(corrections=[RuntimeError("rate limited"), RuntimeError("")])
    report = await auditor.audit(broken)

    result = await FeedbackDrivenRetryAgent(extractor, auditor, max_retries=2).attempt_correction(
        images, broken, report,
    )

    assert isinstance(result, StillFailing)
    assert result.errors == ["Attempt 1: rate limited", "Attempt 2: RuntimeError"]
    assert result.data is broken
    assert result.last_audit_report == report


async def test_error_then_success(images, auditor, broken, make_invoice) -> None:
    extractor = FakeExtractor(corrections=[RuntimeError("timeout"), make_invoice()])
    report = await auditor.audit(broken)

    result = await FeedbackDrivenRetryAgent(extractor, auditor).attempt_correction(images, broken, report)

    assert isinstance(result, CorrectedOnRetry)
    assert result.attempt == 2


async def test_passed_audit_needs_no_retry(images, auditor, make_invoice) -> None:
    invoice = make_invoice()
    extractor = FakeExtractor()

    result = await FeedbackDrivenRetryAgent(extractor, auditor).attempt_correction(
        images, invoice, await auditor.audit(invoice),
    )

    assert result == NoRetryNeeded(reason="audit_passed")
    assert extractor.feedback == []


async def test_only_non_critical_failures_need_no_retry(images, auditor, make_invoice) -> None:
    report = AuditReport.from_checks([
        AuditCheck.failed(CheckType.COMPANY_NAME, "vendorName", "does not match"),
    ])
    extractor = FakeExtractor()

    result = await FeedbackDrivenRetryAgent(extractor, auditor).attempt_correction(images, make_invoice(), report)

    assert result == NoRetryNeeded(reason="no_critical_failures")
    assert extractor.feedback == []


async def test_zero_retries(images, auditor, broken) -> None:
    extractor = FakeExtractor()
    report = await auditor.audit(broken)

    result = await FeedbackDrivenRetryAgent(extractor, auditor, max_retries=0).attempt_correction(
        images, broken, report,
    )

    assert isinstance(result, StillFailing)
    assert result.attempts == 0
    assert extractor.feedback == []


def test_negative_retries_rejected(auditor) -> None:
    with pytest.raises(ValueError):
        FeedbackDrivenRetryAgent(FakeExtractor(), auditor, max_retries=-1)


def test_changed_fields_uses_wire_names(make_invoice) -> None:
    before = make_invoice()
    after = make_invoice(total_amount="1220.00", iban="BE71096123456769", vendor_name="Acme BV")
    assert changed_fields(before, after) == ["totalAmount", "iban"]
