"""Agent contracts: Pydantic models for inter-agent communication.

Defines the data structures that flow between pipeline stages:
  Ensemble   -> Consensus:    EnsembleResult
  Consensus  -> Coordinator:  ConsensusResult (+ ConflictReport)
  Auditor    -> Retry/Judge:  AuditReport (list of AuditCheck)
  Retry      -> Coordinator:  RetryResult
  Coordinator -> Judgment:    JudgmentContext
  Judgment   -> Coordinator:  JudgmentDecision

Tagged unions are closed sets of frozen models, each carrying a ``kind``
literal; consumers dispatch with ``isinstance``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from autopilot.modules.processing.schemas import ExtractedData

T = TypeVar("T", bound=ExtractedData)

_FROZEN = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Perception ensemble output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnsembleResult(Generic[T]):
    """Both tiers' outcomes for one document.

    A tier that failed has no candidate and keeps its exception for
    diagnostics.
    """

    fast_candidate: T | None = None
    expert_candidate: T | None = None
    fast_error: BaseException | None = None
    expert_error: BaseException | None = None

    @property
    def has_any_candidate(self) -> bool:
        return self.fast_candidate is not None or self.expert_candidate is not None


# ---------------------------------------------------------------------------
# Consensus
# ---------------------------------------------------------------------------


class ConflictSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"


class ModelWeight(str, Enum):
    """Which tier wins when the two disagree on a field."""

    PREFER_FAST = "PREFER_FAST"
    PREFER_EXPERT = "PREFER_EXPERT"
    REQUIRE_MATCH = "REQUIRE_MATCH"  # keep neither value, force review


class FieldConflict(BaseModel):
    model_config = _FROZEN

    field: str = Field(..., description="Wire name of the disputed field")
    fast_value: str | None
    expert_value: str | None
    chosen_value: str | None
    chosen_source: Literal["fast", "expert", "none"]
    severity: ConflictSeverity
    rationale: str


class ConflictReport(BaseModel):
    model_config = _FROZEN

    conflicts: list[FieldConflict] = Field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def critical_conflicts(self) -> list[FieldConflict]:
        return [c for c in self.conflicts if c.severity == ConflictSeverity.CRITICAL]

    @property
    def conflicting_fields(self) -> list[str]:
        return [c.field for c in self.conflicts]


class NoData(BaseModel):
    model_config = _FROZEN

    kind: Literal["no_data"] = "no_data"


class SingleSource(BaseModel, Generic[T]):
    model_config = _FROZEN

    kind: Literal["single_source"] = "single_source"
    data: T
    source: Literal["fast", "expert"]


class Unanimous(BaseModel, Generic[T]):
    model_config = _FROZEN

    kind: Literal["unanimous"] = "unanimous"
    data: T


class WithConflicts(BaseModel, Generic[T]):
    model_config = _FROZEN

    kind: Literal["with_conflicts"] = "with_conflicts"
    data: T
    report: ConflictReport


ConsensusResult = Union[NoData, SingleSource, Unanimous, WithConflicts]


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class CheckType(str, Enum):
    MATH = "MATH"
    CHECKSUM_IBAN = "CHECKSUM_IBAN"
    CHECKSUM_OGM = "CHECKSUM_OGM"
    VAT_RATE = "VAT_RATE"
    COMPANY_EXISTS = "COMPANY_EXISTS"
    COMPANY_NAME = "COMPANY_NAME"

    @property
    def display_name(self) -> str:
        return _CHECK_DISPLAY_NAMES[self]


_CHECK_DISPLAY_NAMES = {
    CheckType.MATH: "Mathematical Verification",
    CheckType.CHECKSUM_IBAN: "IBAN Bank Account",
    CheckType.CHECKSUM_OGM: "OGM Payment Reference",
    CheckType.VAT_RATE: "VAT Rate",
    CheckType.COMPANY_EXISTS: "Company Registry",
    CheckType.COMPANY_NAME: "Company Name",
}

# Registry checks inform judgment but never trigger self-correction
CRITICAL_CHECK_TYPES = frozenset({
    CheckType.MATH,
    CheckType.CHECKSUM_IBAN,
    CheckType.CHECKSUM_OGM,
    CheckType.VAT_RATE,
})


class CheckStatus(str, Enum):
    PASSED = "PASSED"
    WARNING = "WARNING"
    INCOMPLETE = "INCOMPLETE"
    FAILED = "FAILED"


class AuditStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"


class AuditCheck(BaseModel):
    """Result of one validation rule against one field."""

    model_config = _FROZEN

    type: CheckType
    field: str = Field(..., description="Wire name of the checked field")
    status: CheckStatus
    message: str
    hint: str | None = Field(None, description="What to look at when correcting")
    expected: str | None = None
    actual: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.status == CheckStatus.FAILED and self.type in CRITICAL_CHECK_TYPES

    @classmethod
    def passed(cls, type: CheckType, field: str, message: str) -> AuditCheck:
        return cls(type=type, field=field, status=CheckStatus.PASSED, message=message)

    @classmethod
    def incomplete(cls, type: CheckType, field: str, message: str) -> AuditCheck:
        return cls(type=type, field=field, status=CheckStatus.INCOMPLETE, message=message)

    @classmethod
    def warning(
        cls,
        type: CheckType,
        field: str,
        message: str,
        hint: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> AuditCheck:
        return cls(
            type=type, field=field, status=CheckStatus.WARNING, message=message,
            hint=hint, expected=expected, actual=actual,
        )

    @classmethod
    def failed(
        cls,
        type: CheckType,
        field: str,
        message: str,
        hint: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> AuditCheck:
        return cls(
            type=type, field=field, status=CheckStatus.FAILED, message=message,
            hint=hint, expected=expected, actual=actual,
        )


class AuditReport(BaseModel):
    model_config = _FROZEN

    checks: list[AuditCheck] = Field(default_factory=list)

    @classmethod
    def from_checks(cls, checks: list[AuditCheck]) -> AuditReport:
        return cls(checks=list(checks))

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status == status)

    @property
    def passed_count(self) -> int:
        return self._count(CheckStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return self._count(CheckStatus.FAILED)

    @property
    def warning_count(self) -> int:
        return self._count(CheckStatus.WARNING)

    @property
    def incomplete_count(self) -> int:
        return self._count(CheckStatus.INCOMPLETE)

    @property
    def critical_failures(self) -> list[AuditCheck]:
        return [c for c in self.checks if c.is_critical]

    @property
    def non_critical_failures(self) -> list[AuditCheck]:
        return [c for c in self.checks if c.status == CheckStatus.FAILED and not c.is_critical]

    @property
    def warnings(self) -> list[AuditCheck]:
        return [c for c in self.checks if c.status == CheckStatus.WARNING]

    @property
    def overall_status(self) -> AuditStatus:
        if any(c.status == CheckStatus.FAILED for c in self.checks):
            return AuditStatus.FAILED
        return AuditStatus.PASSED

    @property
    def is_passed(self) -> bool:
        return self.overall_status == AuditStatus.PASSED


# ---------------------------------------------------------------------------
# Self-correction
# ---------------------------------------------------------------------------


class NoRetryNeeded(BaseModel):
    model_config = _FROZEN

    kind: Literal["no_retry_needed"] = "no_retry_needed"
    reason: str = "audit_passed"


class CorrectedOnRetry(BaseModel, Generic[T]):
    model_config = _FROZEN

    kind: Literal["corrected_on_retry"] = "corrected_on_retry"
    data: T
    attempt: int = Field(..., ge=1)
    corrected_fields: list[str] = Field(default_factory=list)
    original_failures: list[AuditCheck] = Field(default_factory=list)


class StillFailing(BaseModel, Generic[T]):
    model_config = _FROZEN

    kind: Literal["still_failing"] = "still_failing"
    data: T
    attempts: int = Field(..., ge=0)
    remaining_failures: list[AuditCheck] = Field(default_factory=list)
    last_audit_report: AuditReport
    errors: list[str] = Field(default_factory=list)


RetryResult = Union[NoRetryNeeded, CorrectedOnRetry, StillFailing]


def retry_attempts(result: RetryResult | None) -> int:
    if isinstance(result, CorrectedOnRetry):
        return result.attempt
    if isinstance(result, StillFailing):
        return result.attempts
    return 0


def corrected_fields(result: RetryResult | None) -> list[str]:
    if isinstance(result, CorrectedOnRetry):
        return list(result.corrected_fields)
    return []


# ---------------------------------------------------------------------------
# Judgment
# ---------------------------------------------------------------------------


class JudgmentOutcome(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    REJECT = "REJECT"


class JudgmentConfig(BaseModel):
    """Thresholds for the deterministic judge."""

    model_config = _FROZEN

    min_confidence_for_auto_approve: float = Field(0.8, ge=0.0, le=1.0)
    reject_below_confidence: float | None = Field(
        None, description="Reject outright below this confidence; disabled when None",
    )
    auto_approve_with_warnings: bool = True
    max_warnings_for_auto_approve: int = 3

    @classmethod
    def default(cls) -> JudgmentConfig:
        return cls()

    @classmethod
    def strict(cls) -> JudgmentConfig:
        return cls(
            min_confidence_for_auto_approve=0.9,
            auto_approve_with_warnings=False,
            max_warnings_for_auto_approve=0,
        )

    @classmethod
    def lenient(cls) -> JudgmentConfig:
        return cls(min_confidence_for_auto_approve=0.7, max_warnings_for_auto_approve=5)


class JudgmentContext(BaseModel):
    """Read-only snapshot of everything upstream, handed to the judge once."""

    model_config = _FROZEN

    extraction_confidence: float
    conflict_report: ConflictReport | None = None
    audit_report: AuditReport
    retry_result: RetryResult | None = None
    document_type: str
    has_essential_fields: bool
    missing_essential_fields: list[str] = Field(default_factory=list)


class JudgmentDecision(BaseModel):
    model_config = _FROZEN

    outcome: JudgmentOutcome
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    issues_for_user: list[str] = Field(default_factory=list)
    all_critical_checks_passed: bool = True
    has_model_consensus: bool = True
    retry_attempts: int = 0
    corrected_fields: list[str] = Field(default_factory=list)
    decided_by: Literal["rules", "llm"] = "rules"

    @classmethod
    def auto_approve(cls, confidence: float, reasoning: str, **kwargs) -> JudgmentDecision:
        return cls(outcome=JudgmentOutcome.AUTO_APPROVE, confidence=confidence, reasoning=reasoning, **kwargs)

    @classmethod
    def needs_review(
        cls, confidence: float, reasoning: str, issues: list[str], **kwargs,
    ) -> JudgmentDecision:
        return cls(
            outcome=JudgmentOutcome.NEEDS_REVIEW, confidence=confidence,
            reasoning=reasoning, issues_for_user=issues, **kwargs,
        )

    @classmethod
    def reject(
        cls, confidence: float, reasoning: str, issues: list[str] | None = None, **kwargs,
    ) -> JudgmentDecision:
        return cls(
            outcome=JudgmentOutcome.REJECT, confidence=confidence,
            reasoning=reasoning, issues_for_user=issues or [], **kwargs,
        )
