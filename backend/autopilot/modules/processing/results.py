"""Pipeline result envelope.

``AutonomousResult`` is either a ``Success`` (all stages ran, the judge
decided) or a ``Rejected`` (the pipeline stopped before judgment).  The
"silence" goal: 95%+ of documents come back as auto-approved successes.

    result = await coordinator.process(images, tenant)
    if isinstance(result, Success) and result.is_auto_approved:
        ...  # book silently
    elif isinstance(result, Success):
        ...  # show result.judgment.issues_for_user
    else:
        ...  # result.reason, result.stage
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from autopilot.modules.processing.agent_schemas import (
    AuditReport,
    ConflictReport,
    CorrectedOnRetry,
    JudgmentDecision,
    JudgmentOutcome,
    RetryResult,
    T,
    corrected_fields,
    retry_attempts,
)
from autopilot.modules.processing.schemas import ClassifiedDocumentType, DocumentClassification

_FROZEN = ConfigDict(frozen=True)


class RejectionStage(str, Enum):
    CLASSIFICATION = "CLASSIFICATION"
    EXTRACTION = "EXTRACTION"
    VALIDATION = "VALIDATION"


class Success(BaseModel, Generic[T]):
    """Every stage ran and the judge made a decision."""

    model_config = _FROZEN

    kind: Literal["success"] = "success"
    classification: DocumentClassification
    extraction: T
    conflict_report: ConflictReport | None = None
    audit_report: AuditReport
    retry_result: RetryResult | None = None
    judgment: JudgmentDecision

    @property
    def is_auto_approved(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.AUTO_APPROVE

    @property
    def needs_review(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.NEEDS_REVIEW

    @property
    def is_rejected(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.REJECT

    @property
    def document_type(self) -> ClassifiedDocumentType:
        return self.classification.document_type

    @property
    def was_corrected(self) -> bool:
        return isinstance(self.retry_result, CorrectedOnRetry)

    @property
    def corrected_fields(self) -> list[str]:
        return corrected_fields(self.retry_result)

    @property
    def retry_attempts(self) -> int:
        return retry_attempts(self.retry_result)

    @property
    def had_conflicts(self) -> bool:
        return self.conflict_report is not None and self.conflict_report.has_conflicts

    @property
    def confidence(self) -> float:
        return self.judgment.confidence


class Rejected(BaseModel):
    """The pipeline stopped before judgment."""

    model_config = _FROZEN

    kind: Literal["rejected"] = "rejected"
    reason: str
    classification: DocumentClassification | None = None
    stage: RejectionStage
    details: dict[str, str] = Field(default_factory=dict)

    @property
    def document_type(self) -> ClassifiedDocumentType | None:
        return self.classification.document_type if self.classification else None

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def classification_failed(cls, error: BaseException) -> Rejected:
        return cls(
            reason="Classification failed",
            stage=RejectionStage.CLASSIFICATION,
            details={"error": _describe(error)},
        )

    @classmethod
    def unknown_document_type(cls, classification: DocumentClassification) -> Rejected:
        return cls(
            reason="Could not determine document type",
            classification=classification,
            stage=RejectionStage.CLASSIFICATION,
        )

    @classmethod
    def manual_classification_required(cls, classification: DocumentClassification) -> Rejected:
        return cls(
            reason="Document type could not be determined. Manual classification required.",
            classification=classification,
            stage=RejectionStage.CLASSIFICATION,
        )

    @classmethod
    def low_confidence(cls, classification: DocumentClassification, threshold: float) -> Rejected:
        return cls(
            reason=(
                f"Classification confidence {format_percent(classification.confidence)} "
                f"is below threshold {format_percent(threshold)}"
            ),
            classification=classification,
            stage=RejectionStage.CLASSIFICATION,
            details={
                "confidence": str(classification.confidence),
                "threshold": str(threshold),
            },
        )

    @classmethod
    def no_agent_configured(cls, classification: DocumentClassification, family: str) -> Rejected:
        return cls(
            reason=f"No {family} extraction agent configured",
            classification=classification,
            stage=RejectionStage.EXTRACTION,
        )

    @classmethod
    def extraction_failed(
        cls,
        classification: DocumentClassification,
        fast_error: BaseException | None,
        expert_error: BaseException | None,
    ) -> Rejected:
        details = {}
        if fast_error is not None:
            details["fastError"] = _describe(fast_error)
        if expert_error is not None:
            details["expertError"] = _describe(expert_error)
        return cls(
            reason="Both models failed to extract data",
            classification=classification,
            stage=RejectionStage.EXTRACTION,
            details=details,
        )

    @classmethod
    def no_data_extracted(cls, classification: DocumentClassification) -> Rejected:
        return cls(
            reason="No data could be extracted from the document",
            classification=classification,
            stage=RejectionStage.EXTRACTION,
        )


AutonomousResult = Union[Success, Rejected]


def format_percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


# ---------------------------------------------------------------------------
# Batch statistics
# ---------------------------------------------------------------------------


class AutonomousProcessingStats(BaseModel):
    model_config = _FROZEN

    total_processed: int = 0
    auto_approved: int = 0
    needs_review: int = 0
    rejected: int = 0
    early_rejected: int = 0
    average_confidence: float = 0.0
    average_retry_attempts: float = 0.0

    @property
    def auto_approve_rate(self) -> float:
        return self.auto_approved / self.total_processed if self.total_processed else 0.0

    @property
    def review_rate(self) -> float:
        return self.needs_review / self.total_processed if self.total_processed else 0.0

    @property
    def rejection_rate(self) -> float:
        if not self.total_processed:
            return 0.0
        return (self.rejected + self.early_rejected) / self.total_processed

    @property
    def meets_silence_goal(self) -> bool:
        """95%+ of documents processed without a human."""
        return self.auto_approve_rate >= 0.95

    @classmethod
    def from_results(cls, results: list[AutonomousResult]) -> AutonomousProcessingStats:
        successes = [r for r in results if isinstance(r, Success)]
        early = sum(1 for r in results if isinstance(r, Rejected))
        return cls(
            total_processed=len(results),
            auto_approved=sum(1 for s in successes if s.is_auto_approved),
            needs_review=sum(1 for s in successes if s.needs_review),
            rejected=sum(1 for s in successes if s.is_rejected),
            early_rejected=early,
            average_confidence=_mean([s.confidence for s in successes]),
            average_retry_attempts=_mean([float(s.retry_attempts) for s in successes]),
        )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0
