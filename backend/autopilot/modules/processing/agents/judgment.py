"""Agent 5: Judgment, the final gate.

Reviews everything upstream (consensus, audit, self-correction) and
decides whether a document is booked silently (AUTO_APPROVE), shown to a
human with its issues (NEEDS_REVIEW) or handed over for manual processing
(REJECT).

Two layers:

  JudgmentCriteria  deterministic rules, always evaluated first
  JudgmentAgent     returns the rule decision when it is clear-cut and, if
                    asked to, lets an LLM weigh the borderline ones.  The
                    LLM only reads the reports, never the document.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod

import structlog

from autopilot.modules.processing.agent_schemas import (
    CorrectedOnRetry,
    JudgmentConfig,
    JudgmentContext,
    JudgmentDecision,
    JudgmentOutcome,
    NoRetryNeeded,
    StillFailing,
    corrected_fields,
    retry_attempts,
)
from autopilot.modules.processing.agents.base import BaseAgent
from autopilot.modules.processing.agents.sanitizer import normalize_confidence
from autopilot.modules.processing.cost_tracker import CostTracker
from autopilot.modules.processing.results import format_percent
from autopilot.modules.processing.schemas import ClassifiedDocumentType

logger = structlog.get_logger()

# Confidence attached to rule-based rejections
_MISSING_FIELDS_REJECT_CONFIDENCE = 0.95
_CRITICAL_FAILURE_REJECT_CONFIDENCE = 0.9

# Above this an AUTO_APPROVE needs no second opinion
_CLEAR_APPROVE_CONFIDENCE = 0.85
# Below this a NEEDS_REVIEW needs no second opinion
_CLEAR_REVIEW_CONFIDENCE = 0.6


# ---------------------------------------------------------------------------
# Deterministic rules
# ---------------------------------------------------------------------------


class JudgmentCriteria:
    """Rule-based judgment.

    Precedence (highest first):
      1. Unknown document type or missing essential fields   -> REJECT
      2. Audit failed: critical failures left -> REJECT, else -> NEEDS_REVIEW
      3. Tiers disagreed on any field                          -> NEEDS_REVIEW
      4. Confidence below floor / too many warnings            -> NEEDS_REVIEW
      5.                                                       -> AUTO_APPROVE

    ``issues_for_user`` lists every unsatisfied condition in that order,
    not just the one that decided the outcome.
    """

    def __init__(self, config: JudgmentConfig | None = None) -> None:
        self.config = config or JudgmentConfig.default()

    def evaluate(self, context: JudgmentContext) -> JudgmentDecision:
        config = self.config
        audit = context.audit_report
        critical = audit.critical_failures
        conflicts = context.conflict_report.conflicts if context.conflict_report else []

        meta = {
            "all_critical_checks_passed": not critical,
            "has_model_consensus": not conflicts,
            "retry_attempts": retry_attempts(context.retry_result),
            "corrected_fields": corrected_fields(context.retry_result),
        }

        issues: list[str] = []
        outcome: JudgmentOutcome | None = None
        confidence = context.extraction_confidence
        reasoning = ""

        def decide(new_outcome: JudgmentOutcome, new_confidence: float, new_reasoning: str) -> None:
            nonlocal outcome, confidence, reasoning
            if outcome is None:
                outcome, confidence, reasoning = new_outcome, new_confidence, new_reasoning

        # 1. Structural requirements
        if context.document_type == ClassifiedDocumentType.UNKNOWN.value:
            issues.append("Document type could not be determined")
            decide(
                JudgmentOutcome.REJECT, _MISSING_FIELDS_REJECT_CONFIDENCE,
                "Cannot process a document whose document type is unknown",
            )
        if not context.has_essential_fields or context.missing_essential_fields:
            missing = ", ".join(context.missing_essential_fields) or "unspecified"
            issues.append(f"Essential fields missing: {missing}")
            decide(
                JudgmentOutcome.REJECT, _MISSING_FIELDS_REJECT_CONFIDENCE,
                f"Essential fields missing: {missing}",
            )

        # 2. Validation
        if not audit.is_passed:
            for check in critical:
                issues.append(f"{check.type.display_name}: {check.message}")
            for check in audit.non_critical_failures:
                issues.append(f"{check.type.display_name}: {check.message}")

            if critical:
                decide(
                    JudgmentOutcome.REJECT, _CRITICAL_FAILURE_REJECT_CONFIDENCE,
                    _critical_failure_reasoning(context, len(critical)),
                )
            else:
                decide(
                    JudgmentOutcome.NEEDS_REVIEW, confidence,
                    "Validation failed on non-critical checks; a human should confirm",
                )

        # 3. Consensus
        if conflicts:
            for conflict in conflicts:
                issues.append(
                    f"Models disagree on {conflict.field}: "
                    f"'{conflict.fast_value}' vs '{conflict.expert_value}'"
                )
            decide(
                JudgmentOutcome.NEEDS_REVIEW, confidence,
                f"Fast and expert models disagreed on {len(conflicts)} field(s)",
            )

        # 4. Confidence and warnings
        floor = config.reject_below_confidence
        if floor is not None and context.extraction_confidence < floor:
            issues.append(
                f"Extraction confidence {format_percent(context.extraction_confidence)} "
                f"is below the rejection floor {format_percent(floor)}"
            )
            decide(
                JudgmentOutcome.REJECT, 1.0 - context.extraction_confidence,
                "Extraction confidence too low to trust any value",
            )
        if context.extraction_confidence < config.min_confidence_for_auto_approve:
            issues.append(
                f"Extraction confidence {format_percent(context.extraction_confidence)} "
                f"is below the {format_percent(config.min_confidence_for_auto_approve)} "
                f"auto-approve threshold"
            )
            decide(
                JudgmentOutcome.NEEDS_REVIEW, confidence,
                "Extraction confidence below auto-approve threshold",
            )
        if (
            not config.auto_approve_with_warnings
            and audit.warning_count > config.max_warnings_for_auto_approve
        ):
            issues.append(
                f"{audit.warning_count} validation warning(s); at most "
                f"{config.max_warnings_for_auto_approve} allowed for auto-approval"
            )
            for check in audit.warnings:
                issues.append(f"{check.type.display_name}: {check.message}")
            decide(
                JudgmentOutcome.NEEDS_REVIEW, confidence,
                "Too many validation warnings for auto-approval",
            )

        # 5. Clean
        if outcome is None:
            reasoning = (
                f"All critical checks passed with {format_percent(confidence)} extraction confidence"
            )
            if isinstance(context.retry_result, CorrectedOnRetry):
                reasoning += f" after self-correction on attempt {context.retry_result.attempt}"
            return JudgmentDecision.auto_approve(confidence, reasoning, **meta)

        if outcome == JudgmentOutcome.REJECT:
            return JudgmentDecision.reject(confidence, reasoning, issues, **meta)
        return JudgmentDecision.needs_review(confidence, reasoning, issues, **meta)


def _critical_failure_reasoning(context: JudgmentContext, count: int) -> str:
    retry = context.retry_result
    if isinstance(retry, StillFailing):
        return (
            f"{count} critical validation failure(s) remain after "
            f"{retry.attempts} retry attempt(s)"
        )
    return f"{count} critical validation failure(s); self-correction was not attempted"


def is_clear_cut(decision: JudgmentDecision) -> bool:
    """Whether the rule decision stands without a second opinion."""
    if decision.outcome == JudgmentOutcome.REJECT:
        return True
    if decision.outcome == JudgmentOutcome.AUTO_APPROVE:
        return decision.confidence >= _CLEAR_APPROVE_CONFIDENCE
    return bool(decision.issues_for_user) or decision.confidence < _CLEAR_REVIEW_CONFIDENCE


# ---------------------------------------------------------------------------
# LLM second opinion
# ---------------------------------------------------------------------------

JUDGMENT_SYSTEM_PROMPT = """You are the final gatekeeper of an automated bookkeeping pipeline.

You review analysis reports from earlier processing stages and decide:

AUTO_APPROVE (target: 95%+ of documents)
  - No critical audit failures remaining
  - No unresolved critical conflicts between models
  - Extraction confidence >= 80%
  - Essential fields are present
  The document is booked silently; the user never sees it.

NEEDS_REVIEW
  - Warning-level issues but no critical failures
  - Conflicts that were resolved with reasonable confidence
  - Extraction confidence between 50% and 80%
  The user sees the document with the issues highlighted.

REJECT
  - Critical audit failures remain after retries
  - Essential fields (amount, counterparty) are missing
  - Extraction confidence below 50%
  The document requires manual processing.

When in doubt, approve clean extractions; escalate only when correctness
cannot be verified.

Respond with ONLY a JSON object:
{"decision": "AUTO_APPROVE" | "NEEDS_REVIEW" | "REJECT", "confidence": 0.0-1.0,
 "reasoning": "1-2 sentences", "issuesForUser": ["..."]}
"""


class JudgmentBackend(ABC):
    """Abstract base class for text-completion backends of the judge."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class LlmJudgmentBackend(BaseAgent, JudgmentBackend):
    """Judgment backend on the configured LLM provider (text only)."""

    agent_name = "Judgment"

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        super().__init__(provider=provider, model=model, cost_tracker=cost_tracker, tier="fast")

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        result = await self.acall_llm(system_prompt, user_prompt, response_json=False, stage="judgment")
        return result["content"]


class JudgmentAgent:
    """Agent 5: deterministic judge with an optional LLM for edge cases."""

    agent_name = "Judgment"

    def __init__(
        self,
        config: JudgmentConfig | None = None,
        backend: JudgmentBackend | None = None,
    ) -> None:
        self.config = config or JudgmentConfig.default()
        self.criteria = JudgmentCriteria(self.config)
        self.backend = backend

    async def judge(self, context: JudgmentContext, use_llm: bool = False) -> JudgmentDecision:
        decision = self.criteria.evaluate(context)

        if is_clear_cut(decision) or not use_llm or self.backend is None:
            logger.info(
                "Judgment: deterministic decision",
                doc_type=context.document_type,
                outcome=decision.outcome.value,
                confidence=round(decision.confidence, 3),
                issues=len(decision.issues_for_user),
            )
            return decision

        logger.info("Judgment: consulting LLM for edge case", doc_type=context.document_type)
        try:
            response = await self.backend.complete(JUDGMENT_SYSTEM_PROMPT, build_judgment_prompt(context))
            llm_decision = parse_judgment_response(response, decision)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Judgment: LLM failed, using deterministic decision", error=str(e))
            return decision

        logger.info(
            "Judgment: LLM decision",
            doc_type=context.document_type,
            outcome=llm_decision.outcome.value,
            rule_outcome=decision.outcome.value,
            confidence=round(llm_decision.confidence, 3),
        )
        return llm_decision


def build_judgment_prompt(context: JudgmentContext) -> str:
    """Report summary the LLM judges from."""
    audit = context.audit_report
    lines = [
        "# Document Analysis Report",
        "",
        "## Document Summary",
        f"- Document Type: {context.document_type}",
        f"- Extraction Confidence: {format_percent(context.extraction_confidence)}",
        f"- Essential Fields Present: {'Yes' if context.has_essential_fields else 'No'}",
    ]
    if context.missing_essential_fields:
        lines.append(f"- Missing Fields: {', '.join(context.missing_essential_fields)}")

    lines += ["", "## Model Consensus"]
    report = context.conflict_report
    if report is None or not report.has_conflicts:
        lines.append("No conflicts: models agreed on all fields")
    else:
        lines.append(f"{len(report.conflicts)} field conflict(s) detected:")
        for conflict in report.conflicts:
            lines.append(
                f"  - [{conflict.severity.value}] {conflict.field}: "
                f"'{conflict.fast_value}' vs '{conflict.expert_value}'"
            )
        lines.append(f"  Critical conflicts: {len(report.critical_conflicts)}")

    lines += [
        "",
        "## Validation Audit",
        f"- Total Checks: {len(audit.checks)}",
        f"- Passed: {audit.passed_count}",
        f"- Failed: {audit.failed_count}",
        f"- Status: {audit.overall_status.value}",
    ]
    if audit.critical_failures:
        lines.append("Critical Failures:")
        lines += [f"  - {c.type.value}: {c.message}" for c in audit.critical_failures]
    if audit.warnings:
        lines.append("Warnings:")
        lines += [f"  - {c.type.value}: {c.message}" for c in audit.warnings[:3]]
        if len(audit.warnings) > 3:
            lines.append(f"  ... and {len(audit.warnings) - 3} more")

    lines += ["", "## Self-Correction"]
    retry = context.retry_result
    if isinstance(retry, NoRetryNeeded):
        lines.append("No retry needed")
    elif isinstance(retry, CorrectedOnRetry):
        lines.append(f"Corrected on retry attempt {retry.attempt}")
        lines.append(f"   Corrected fields: {', '.join(retry.corrected_fields)}")
    elif isinstance(retry, StillFailing):
        lines.append(f"Still failing after {retry.attempts} retry attempts")
        lines.append(f"   Remaining failures: {len(retry.remaining_failures)}")
    else:
        lines.append("Self-correction not attempted")

    lines += [
        "",
        "## Your Decision",
        "Based on the above, decide: AUTO_APPROVE, NEEDS_REVIEW, or REJECT",
    ]
    return "\n".join(lines)


_OUTCOME_KEYWORDS = (
    (("AUTO_APPROVE", "AUTOAPPROVE"), JudgmentOutcome.AUTO_APPROVE),
    (("NEEDS_REVIEW", "NEEDSREVIEW"), JudgmentOutcome.NEEDS_REVIEW),
    (("REJECT",), JudgmentOutcome.REJECT),
)


def _outcome_from_text(text: str) -> JudgmentOutcome | None:
    upper = text.upper()
    for keywords, outcome in _OUTCOME_KEYWORDS:
        if any(k in upper for k in keywords):
            return outcome
    return None


def parse_judgment_response(response: str, rule_decision: JudgmentDecision) -> JudgmentDecision:
    """JSON answer first, keyword scan second; metadata comes from the rule decision."""
    meta = {
        "all_critical_checks_passed": rule_decision.all_critical_checks_passed,
        "has_model_consensus": rule_decision.has_model_consensus,
        "retry_attempts": rule_decision.retry_attempts,
        "corrected_fields": rule_decision.corrected_fields,
        "decided_by": "llm",
    }

    match = re.search(r"\{[\s\S]*\}", response)
    if match:
        try:
            data = json.loads(match.group(0))
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("decision"):
            outcome = _outcome_from_text(str(data["decision"])) or JudgmentOutcome.NEEDS_REVIEW
            confidence = normalize_confidence(data.get("confidence", 0.8))
            reasoning = str(data.get("reasoning") or "")
            issues = [str(i) for i in data.get("issuesForUser") or data.get("issues_for_user") or []]
            return JudgmentDecision(
                outcome=outcome, confidence=confidence, reasoning=reasoning,
                issues_for_user=issues, **meta,
            )

    # Keyword fallback; unclear answers go to review
    outcome = _outcome_from_text(response) or JudgmentOutcome.NEEDS_REVIEW
    if outcome == JudgmentOutcome.AUTO_APPROVE:
        return JudgmentDecision.auto_approve(0.8, "LLM approved document", **meta)
    if outcome == JudgmentOutcome.REJECT:
        return JudgmentDecision.reject(0.8, "LLM rejected document", **meta)
    return JudgmentDecision.needs_review(
        0.6, "LLM requested review", ["Review requested by judgment model"], **meta,
    )
