"""Agent 4: Feedback-driven self-correction.

When the auditor reports critical failures, the extraction is handed back
to a correcting extractor together with a feedback prompt built from the
audit report.  Each candidate is re-audited; the loop stops at the first
candidate without critical failures or when the retry budget is spent.
"""

from __future__ import annotations

import asyncio
from typing import Generic

import structlog

from autopilot.modules.processing.agent_schemas import (
    AuditReport,
    CorrectedOnRetry,
    NoRetryNeeded,
    RetryResult,
    StillFailing,
    T,
)
from autopilot.modules.processing.agents.auditor import AuditorAgent
from autopilot.modules.processing.agents.extractors import ExtractionAgent
from autopilot.modules.processing.agents.feedback import build_correction_summary, build_feedback_prompt
from autopilot.modules.processing.schemas import ExtractedData, PageImage

logger = structlog.get_logger()

DEFAULT_MAX_RETRIES = 2


class FeedbackDrivenRetryAgent(Generic[T]):
    """Agent 4: bounded correct-and-re-audit loop for one document family."""

    agent_name = "Retry"

    def __init__(
        self,
        extractor: ExtractionAgent[T],
        auditor: AuditorAgent,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.extractor = extractor
        self.auditor = auditor
        self.max_retries = max_retries

    async def attempt_correction(
        self,
        images: list[PageImage],
        initial_extraction: T,
        initial_audit_report: AuditReport,
    ) -> RetryResult:
        original_failures = initial_audit_report.critical_failures
        if initial_audit_report.is_passed:
            return NoRetryNeeded(reason="audit_passed")
        if not original_failures:
            return NoRetryNeeded(reason="no_critical_failures")

        logger.info(
            "Retry: starting self-correction",
            critical=len(original_failures),
            max_retries=self.max_retries,
            summary=build_correction_summary(original_failures),
        )

        current, current_report = initial_extraction, initial_audit_report
        errors: list[str] = []

        for attempt in range(1, self.max_retries + 1):
            feedback = build_feedback_prompt(
                current_report, attempt, self.max_retries,
                jurisdiction=self.auditor.jurisdiction,
            )
            try:
                candidate = await self.extractor.extract_with_feedback(images, current, feedback)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                errors.append(f"Attempt {attempt}: {str(e) or type(e).__name__}")
                logger.warning("Retry: correcting extractor failed", attempt=attempt, error=str(e))
                continue

            report = await self.auditor.audit(candidate)
            if not report.critical_failures:
                fields = changed_fields(initial_extraction, candidate)
                logger.info("Retry: corrected", attempt=attempt, corrected_fields=fields)
                return CorrectedOnRetry(
                    data=candidate,
                    attempt=attempt,
                    corrected_fields=fields,
                    original_failures=original_failures,
                )

            logger.info(
                "Retry: still failing",
                attempt=attempt,
                critical=len(report.critical_failures),
            )
            current, current_report = candidate, report

        logger.warning(
            "Retry: budget exhausted",
            attempts=self.max_retries,
            remaining=len(current_report.critical_failures),
            errors=len(errors),
        )
        return StillFailing(
            data=current,
            attempts=self.max_retries,
            remaining_failures=current_report.critical_failures,
            last_audit_report=current_report,
            errors=errors,
        )


def changed_fields(before: ExtractedData, after: ExtractedData) -> list[str]:
    """Wire names of salient fields whose value differs between two extractions."""
    return [
        type(after).wire_name(name)
        for name in type(after).salient_fields()
        if getattr(before, name, None) != getattr(after, name, None)
    ]
