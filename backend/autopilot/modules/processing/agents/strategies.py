"""Per-family processing strategies and type routing.

The coordinator runs one generic pipeline; everything that differs per
document family lives in a ``DocumentStrategy``:

  model             the Extracted*Data type the family's agents return
  merge             the consensus entry point for that type
  audit             the auditor entry point for that type
  essential_fields  wire names that must be present to auto-approve
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic

from autopilot.modules.processing.agent_schemas import AuditReport, ConsensusResult, T
from autopilot.modules.processing.agents.auditor import AuditorAgent
from autopilot.modules.processing.agents.consensus import ConsensusEngine
from autopilot.modules.processing.agents.extractors import ExtractionAgent
from autopilot.modules.processing.schemas import (
    ClassifiedDocumentType,
    DocumentFamily,
    ExtractedBillData,
    ExtractedData,
    ExtractedExpenseData,
    ExtractedInvoiceData,
    ExtractedReceiptData,
)


@dataclass(frozen=True)
class DocumentStrategy(Generic[T]):
    family: DocumentFamily
    model: type[T]
    merge: Callable[[ConsensusEngine, T | None, T | None], ConsensusResult]
    audit: Callable[[AuditorAgent, T], Awaitable[AuditReport]]

    @property
    def essential_fields(self) -> tuple[str, ...]:
        return tuple(self.model.wire_name(name) for name in self.model.ESSENTIAL_FIELDS)

    def missing_fields(self, extraction: ExtractedData) -> list[str]:
        return extraction.missing_essential_fields()


@dataclass(frozen=True)
class DocumentAgents(Generic[T]):
    """Extraction agents bound to one family.

    ``corrector`` re-extracts with audit feedback during self-correction;
    no corrector means no self-correction for the family.
    """

    fast: ExtractionAgent[T] | None = None
    expert: ExtractionAgent[T] | None = None
    corrector: ExtractionAgent[T] | None = None


STRATEGIES: dict[DocumentFamily, DocumentStrategy] = {
    DocumentFamily.INVOICE: DocumentStrategy(
        family=DocumentFamily.INVOICE,
        model=ExtractedInvoiceData,
        merge=ConsensusEngine.merge_invoices,
        audit=AuditorAgent.audit_invoice,
    ),
    DocumentFamily.BILL: DocumentStrategy(
        family=DocumentFamily.BILL,
        model=ExtractedBillData,
        merge=ConsensusEngine.merge_bills,
        audit=AuditorAgent.audit_bill,
    ),
    DocumentFamily.RECEIPT: DocumentStrategy(
        family=DocumentFamily.RECEIPT,
        model=ExtractedReceiptData,
        merge=ConsensusEngine.merge_receipts,
        audit=AuditorAgent.audit_receipt,
    ),
    DocumentFamily.EXPENSE: DocumentStrategy(
        family=DocumentFamily.EXPENSE,
        model=ExtractedExpenseData,
        merge=ConsensusEngine.merge_expenses,
        audit=AuditorAgent.audit_expense,
    ),
}

# UNKNOWN has no route
ROUTES: dict[ClassifiedDocumentType, DocumentFamily] = {
    ClassifiedDocumentType.INVOICE: DocumentFamily.INVOICE,
    ClassifiedDocumentType.CREDIT_NOTE: DocumentFamily.INVOICE,
    ClassifiedDocumentType.PRO_FORMA: DocumentFamily.INVOICE,
    ClassifiedDocumentType.BILL: DocumentFamily.BILL,
    ClassifiedDocumentType.RECEIPT: DocumentFamily.RECEIPT,
    ClassifiedDocumentType.EXPENSE: DocumentFamily.EXPENSE,
}


def route(document_type: ClassifiedDocumentType) -> DocumentStrategy | None:
    family = ROUTES.get(document_type)
    return STRATEGIES[family] if family is not None else None
