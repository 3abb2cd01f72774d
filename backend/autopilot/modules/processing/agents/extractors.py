"""Agent 2: Document-family extraction agents.

One extraction agent per document family and model tier.  Each returns a
validated Extracted*Data model or raises ``ExtractionError``; catching is
left to the ensemble and the coordinator, which turn failures into result
values.

Extractors:
  - InvoiceExtractionAgent:  invoices, credit notes, pro-formas
  - BillExtractionAgent:     supplier bills
  - ReceiptExtractionAgent:  till receipts
  - ExpenseExtractionAgent:  other expense slips

``extract_with_feedback`` is the correcting variant used by the
self-correction loop: same images, plus the previous extraction and the
auditor's feedback prompt.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Generic

import structlog
from pydantic import ValidationError

from autopilot.modules.processing.agent_schemas import T
from autopilot.modules.processing.agents.base import BaseAgent
from autopilot.modules.processing.agents.sanitizer import sanitize_extraction_json
from autopilot.modules.processing.cost_tracker import CostTracker
from autopilot.modules.processing.schemas import (
    DocumentFamily,
    ExtractedBillData,
    ExtractedData,
    ExtractedExpenseData,
    ExtractedInvoiceData,
    ExtractedReceiptData,
    PageImage,
)

logger = structlog.get_logger()


class ExtractionError(Exception):
    """The model's output could not be turned into extracted data."""


class ExtractionAgent(ABC, Generic[T]):
    """Abstract base class for extraction agents of one document family."""

    agent_name: str = "Extractor"

    @abstractmethod
    async def extract(self, images: list[PageImage]) -> T:
        ...

    async def extract_with_feedback(
        self,
        images: list[PageImage],
        previous: T,
        feedback: str,
    ) -> T:
        """Re-extract with the auditor's feedback; plain re-extraction by default."""
        logger.debug(f"{self.agent_name}: no feedback-aware extraction, re-extracting")
        return await self.extract(images)


# ---------------------------------------------------------------------------
# LLM-backed extractors
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """You extract structured bookkeeping data from scanned {label} documents.

Rules:
  - Copy amounts exactly as printed, as strings (e.g. "1.234,56"); never compute missing totals.
  - Dates as ISO 8601 (YYYY-MM-DD) when the day, month and year are legible.
  - Copy IBANs, VAT numbers and payment references character by character.
  - Use null for anything not present on the document. Do not guess.
  - "confidence" is your overall confidence 0.0-1.0 that every value is correct.

Respond with one JSON object using exactly these keys:
{schema}
"""


def schema_hint(model: type[ExtractedData]) -> str:
    """JSON skeleton with the model's wire names, nested lists expanded one level."""
    skeleton: dict[str, object] = {}
    for name, info in model.model_fields.items():
        wire = info.alias or name
        if name in model.LIST_FIELDS:
            skeleton[wire] = ["..."]
        elif name == "confidence":
            skeleton[wire] = 0.0
        elif name == "provenance":
            skeleton[wire] = {"page": 1, "notes": "..."}
        else:
            skeleton[wire] = None
    return json.dumps(skeleton, indent=2)


class LlmExtractionAgent(BaseAgent, ExtractionAgent[T]):
    """Base class for LLM extraction agents."""

    agent_name = "Extractor"
    family: DocumentFamily
    output_model: type[ExtractedData]
    document_label: str = "financial"

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        cost_tracker: CostTracker | None = None,
        *,
        tier: str = "expert",
    ) -> None:
        super().__init__(provider=provider, model=model, cost_tracker=cost_tracker, tier=tier)
        self._system_prompt = _SYSTEM_PROMPT.format(
            label=self.document_label,
            schema=schema_hint(self.output_model),
        )

    async def extract(self, images: list[PageImage]) -> T:
        user_content = f"Extract all fields from this {self.document_label} ({len(images)} page(s))."
        return await self._run(images, user_content, stage=f"extraction:{self.tier}")

    async def extract_with_feedback(
        self,
        images: list[PageImage],
        previous: T,
        feedback: str,
    ) -> T:
        previous_json = previous.model_dump_json(
            by_alias=True, exclude={"extracted_text"}, exclude_none=True, indent=2,
        )
        user_content = (
            f"{feedback}\n"
            f"Your previous extraction:\n{previous_json}\n\n"
            f"Return the complete corrected extraction for this {self.document_label}."
        )
        return await self._run(images, user_content, stage="correction")

    async def _run(self, images: list[PageImage], user_content: str, *, stage: str) -> T:
        try:
            result = await self.acall_llm(
                self._system_prompt,
                user_content,
                images,
                response_json=True,
                stage=stage,
                doc_type=self.family.value,
            )
        except ValueError as e:
            # json.JSONDecodeError and non-object payloads
            raise ExtractionError(f"{self.agent_name}: unparseable model output: {e}") from e

        try:
            extraction = self.output_model.model_validate(sanitize_extraction_json(result["content"]))
        except ValidationError as e:
            raise ExtractionError(
                f"{self.agent_name}: output failed validation ({e.error_count()} errors)"
            ) from e

        logger.info(
            f"{self.agent_name}: extraction complete",
            stage=stage,
            model=self.model,
            confidence=extraction.confidence,
            missing=extraction.missing_essential_fields(),
        )
        return extraction


class InvoiceExtractionAgent(LlmExtractionAgent[ExtractedInvoiceData]):
    """Invoices, credit notes and pro-formas."""
    agent_name = "Invoice-Extractor"
    family = DocumentFamily.INVOICE
    output_model = ExtractedInvoiceData
    document_label = "invoice"


class BillExtractionAgent(LlmExtractionAgent[ExtractedBillData]):
    """Supplier bills."""
    agent_name = "Bill-Extractor"
    family = DocumentFamily.BILL
    output_model = ExtractedBillData
    document_label = "supplier bill"


class ReceiptExtractionAgent(LlmExtractionAgent[ExtractedReceiptData]):
    """Till receipts."""
    agent_name = "Receipt-Extractor"
    family = DocumentFamily.RECEIPT
    output_model = ExtractedReceiptData
    document_label = "receipt"


class ExpenseExtractionAgent(LlmExtractionAgent[ExtractedExpenseData]):
    """Expense slips."""
    agent_name = "Expense-Extractor"
    family = DocumentFamily.EXPENSE
    output_model = ExtractedExpenseData
    document_label = "expense slip"


# ---------------------------------------------------------------------------
# Factory + Registry
# ---------------------------------------------------------------------------

EXTRACTOR_REGISTRY: dict[DocumentFamily, type[LlmExtractionAgent]] = {
    DocumentFamily.INVOICE: InvoiceExtractionAgent,
    DocumentFamily.BILL: BillExtractionAgent,
    DocumentFamily.RECEIPT: ReceiptExtractionAgent,
    DocumentFamily.EXPENSE: ExpenseExtractionAgent,
}


def get_extractor(
    family: DocumentFamily,
    tier: str = "expert",
    provider: str | None = None,
    model: str | None = None,
    cost_tracker: CostTracker | None = None,
) -> LlmExtractionAgent:
    """Factory: the extraction agent for a document family and tier."""
    cls = EXTRACTOR_REGISTRY[family]
    return cls(provider=provider, model=model, cost_tracker=cost_tracker, tier=tier)
