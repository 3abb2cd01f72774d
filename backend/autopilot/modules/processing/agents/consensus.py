"""Agent 2b: Consensus Engine.

Merges the fast-tier and expert-tier extractions of one document into a
single record.  PURELY PROGRAMMATIC: no LLM calls, no I/O, inputs are
never mutated, and the same two candidates always give the same result.

Merge Strategy:
  - Neither candidate:       NoData
  - One candidate:           SingleSource (that one)
  - Salient fields agree:    Unanimous
  - Any salient field differs:  WithConflicts + ConflictReport

Per field:
  - Amounts compare numerically (formatting variance ignored, epsilon applies).
  - Identifiers compare ignoring spacing, punctuation and case.
  - Text compares after whitespace normalisation.
  - One side empty: take the other, no conflict.
  - Disagreement: pick by field weight (expert by default) and record it.
  - Lists, OCR text and provenance: expert when present, else fast.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

import structlog

from autopilot.modules.processing.agent_schemas import (
    ConflictReport,
    ConflictSeverity,
    ConsensusResult,
    FieldConflict,
    ModelWeight,
    NoData,
    SingleSource,
    Unanimous,
    WithConflicts,
)
from autopilot.modules.processing.money import amounts_equal, parse_amount
from autopilot.modules.processing.schemas import (
    ExtractedBillData,
    ExtractedData,
    ExtractedExpenseData,
    ExtractedInvoiceData,
    ExtractedReceiptData,
)

logger = structlog.get_logger()

DEFAULT_AMOUNT_EPSILON = Decimal("0.005")

# Conflicts on these fields change what gets paid or to whom
CRITICAL_FIELDS = frozenset({
    "total_amount", "subtotal", "total_vat_amount", "vat_amount", "amount",
    "iban", "bank_account", "payment_reference",
    "vendor_vat_number", "supplier_vat_number", "merchant_vat_number",
})

# Fields never compared: free text, OCR dump, provenance
_PASSTHROUGH_FIELDS = ("extracted_text", "provenance", "notes", "credit_note_meta")


class ConsensusEngine:
    """Agent 2b: Field-by-field reconciliation of two extractions.

    No LLM calls, pure Python logic.
    """

    agent_name = "Consensus"

    def __init__(
        self,
        weights: dict[str, ModelWeight] | None = None,
        amount_epsilon: Decimal = DEFAULT_AMOUNT_EPSILON,
    ) -> None:
        self.weights = dict(weights or {})
        self.amount_epsilon = amount_epsilon

    # ------------------------------------------------------------------
    # Per-family entry points
    # ------------------------------------------------------------------

    def merge_invoices(
        self, fast: ExtractedInvoiceData | None, expert: ExtractedInvoiceData | None,
    ) -> ConsensusResult:
        return self.merge(fast, expert, family="invoice")

    def merge_bills(
        self, fast: ExtractedBillData | None, expert: ExtractedBillData | None,
    ) -> ConsensusResult:
        return self.merge(fast, expert, family="bill")

    def merge_receipts(
        self, fast: ExtractedReceiptData | None, expert: ExtractedReceiptData | None,
    ) -> ConsensusResult:
        return self.merge(fast, expert, family="receipt")

    def merge_expenses(
        self, fast: ExtractedExpenseData | None, expert: ExtractedExpenseData | None,
    ) -> ConsensusResult:
        return self.merge(fast, expert, family="expense")

    # ------------------------------------------------------------------
    # Generic merge
    # ------------------------------------------------------------------

    def merge(
        self,
        fast: ExtractedData | None,
        expert: ExtractedData | None,
        *,
        family: str = "",
    ) -> ConsensusResult:
        if fast is None and expert is None:
            logger.warning("Consensus: no candidates", doc_type=family)
            return NoData()
        if fast is None:
            return SingleSource(data=expert, source="expert")
        if expert is None:
            return SingleSource(data=fast, source="fast")
        if type(fast) is not type(expert):
            raise TypeError(
                f"Cannot merge {type(fast).__name__} with {type(expert).__name__}"
            )

        model = type(expert)
        conflicts: list[FieldConflict] = []
        values: dict[str, Any] = {}

        for name in model.AMOUNT_FIELDS:
            values[name] = self._resolve(
                model, name, getattr(fast, name), getattr(expert, name),
                self._amounts_agree, conflicts,
            )
        for name in model.IDENTIFIER_FIELDS:
            values[name] = self._resolve(
                model, name, getattr(fast, name), getattr(expert, name),
                _identifiers_agree, conflicts,
            )
        for name in model.TEXT_FIELDS:
            values[name] = self._resolve(
                model, name, getattr(fast, name), getattr(expert, name),
                _texts_agree, conflicts,
            )
        for name in model.LIST_FIELDS:
            values[name] = getattr(expert, name) or getattr(fast, name)
        for name in _PASSTHROUGH_FIELDS:
            if name in model.model_fields:
                expert_value = getattr(expert, name)
                values[name] = expert_value if expert_value is not None else getattr(fast, name)

        values["confidence"] = merged_confidence(fast.confidence, expert.confidence, len(conflicts))
        merged = expert.model_copy(update=values)

        logger.info(
            "Consensus: candidates merged",
            doc_type=family,
            conflicts=len(conflicts),
            critical=sum(1 for c in conflicts if c.severity == ConflictSeverity.CRITICAL),
            confidence=round(values["confidence"], 3),
        )

        if not conflicts:
            return Unanimous(data=merged)
        return WithConflicts(data=merged, report=ConflictReport(conflicts=conflicts))

    # ------------------------------------------------------------------
    # Field resolution
    # ------------------------------------------------------------------

    def _resolve(
        self,
        model: type[ExtractedData],
        name: str,
        fast_value: str | None,
        expert_value: str | None,
        agree,
        conflicts: list[FieldConflict],
    ) -> str | None:
        if _is_blank(fast_value):
            return expert_value
        if _is_blank(expert_value):
            return fast_value
        if agree(fast_value, expert_value):
            # Same value, keep the expert's formatting
            return expert_value

        weight = self.weights.get(name, ModelWeight.PREFER_EXPERT)
        if weight == ModelWeight.PREFER_FAST:
            chosen, source = fast_value, "fast"
            rationale = "Tiers disagree; field weighted towards the fast tier"
        elif weight == ModelWeight.REQUIRE_MATCH:
            chosen, source = None, "none"
            rationale = "Tiers disagree on a field that requires agreement; value withheld for review"
        else:
            chosen, source = expert_value, "expert"
            rationale = "Tiers disagree; expert tier preferred"

        conflicts.append(FieldConflict(
            field=model.wire_name(name),
            fast_value=fast_value,
            expert_value=expert_value,
            chosen_value=chosen,
            chosen_source=source,
            severity=ConflictSeverity.CRITICAL if name in CRITICAL_FIELDS else ConflictSeverity.WARNING,
            rationale=rationale,
        ))
        return chosen

    def _amounts_agree(self, a: str, b: str) -> bool:
        parsed_a, parsed_b = parse_amount(a), parse_amount(b)
        if parsed_a is None or parsed_b is None:
            # Unreadable amount: fall back to text comparison
            return _texts_agree(a, b)
        return amounts_equal(parsed_a, parsed_b, self.amount_epsilon)


def merged_confidence(fast: float, expert: float, conflict_count: int) -> float:
    """Expert-weighted mean, minus 5% per conflict (at most 25%)."""
    base = (fast + expert * 2) / 3
    penalty = min(conflict_count * 0.05, 0.25)
    return max(0.0, base - penalty)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _texts_agree(a: str, b: str) -> bool:
    return " ".join(a.split()) == " ".join(b.split())


def _identifiers_agree(a: str, b: str) -> bool:
    return re.sub(r"[\s.\-/+*]", "", a).upper() == re.sub(r"[\s.\-/+*]", "", b).upper()
