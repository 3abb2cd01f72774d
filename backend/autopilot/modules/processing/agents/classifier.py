"""Agent 1: Document Classifier.

Decides which document family the scanned pages belong to (invoice,
credit note, pro-forma, bill, receipt, expense) so the coordinator can
route them to the matching extraction agents.  The tenant context is part
of the prompt: whether the tenant is the issuer or the recipient is what
separates an outgoing invoice from an incoming bill.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from autopilot.modules.processing.agents.base import BaseAgent
from autopilot.modules.processing.agents.sanitizer import normalize_confidence
from autopilot.modules.processing.cost_tracker import CostTracker
from autopilot.modules.processing.schemas import (
    ClassifiedDocumentType,
    DocumentClassification,
    PageImage,
    TenantContext,
)

logger = structlog.get_logger()

# Only the first pages carry the header that decides the type
_MAX_CLASSIFICATION_PAGES = 2

_SYSTEM_PROMPT = """You classify scanned financial documents for a bookkeeping system.

Document types:
  INVOICE      a sales invoice ISSUED BY the tenant company to a customer
  CREDIT_NOTE  a credit note (negative invoice) referencing an earlier invoice
  PRO_FORMA    a pro-forma / quotation styled as an invoice, not a tax document
  BILL         an invoice RECEIVED BY the tenant company from a supplier
  RECEIPT      a till or card receipt from a shop, restaurant, fuel station
  EXPENSE      any other proof of a small business expense (ticket, parking slip)
  UNKNOWN      not a financial document, or unreadable

Respond with JSON only:
{"documentType": "<one of the types above>", "confidence": <0.0-1.0>, "reasoning": "<one sentence>"}
"""


class DocumentClassifier(ABC):
    """Abstract base class for classifiers."""

    agent_name = "Classifier"

    @abstractmethod
    async def classify(
        self,
        images: list[PageImage],
        tenant_context: TenantContext,
    ) -> DocumentClassification:
        ...


class LlmClassifierAgent(BaseAgent, DocumentClassifier):
    """Agent 1: Document type classification via a vision LLM.

    Never raises for unusable model output: a failed call classifies the
    document as UNKNOWN with zero confidence, which the coordinator rejects.
    """

    agent_name = "Classifier"

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        super().__init__(provider=provider, model=model, cost_tracker=cost_tracker, tier="fast")

    async def classify(
        self,
        images: list[PageImage],
        tenant_context: TenantContext,
    ) -> DocumentClassification:
        user_content = (
            f"Tenant company: {tenant_context.company_name or 'unknown'}\n"
            f"Tenant VAT number: {tenant_context.vat_number or 'unknown'}\n"
            f"Tenant country: {tenant_context.country}\n\n"
            f"Classify the attached document ({len(images)} page(s))."
        )

        try:
            result = await self.acall_llm(
                _SYSTEM_PROMPT,
                user_content,
                images[:_MAX_CLASSIFICATION_PAGES],
                response_json=True,
                stage="classification",
            )
            classification = parse_classification(result["content"])

            logger.info(
                "Document classified",
                tenant=tenant_context.tenant_id,
                doc_type=classification.document_type.value,
                confidence=classification.confidence,
                reasoning=(classification.reasoning or "")[:80],
            )
            return classification

        except Exception as e:
            logger.error(
                "Classification failed, falling back to 'UNKNOWN'",
                tenant=tenant_context.tenant_id,
                error=str(e),
            )
            return DocumentClassification(
                document_type=ClassifiedDocumentType.UNKNOWN,
                confidence=0.0,
                reasoning=f"Classification error: {e}",
            )


def parse_classification(data: dict) -> DocumentClassification:
    """Build a DocumentClassification from the model's JSON answer."""
    raw_type = str(data.get("documentType") or data.get("document_type") or "")
    key = raw_type.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        document_type = ClassifiedDocumentType(key)
    except ValueError:
        document_type = ClassifiedDocumentType.UNKNOWN

    return DocumentClassification(
        document_type=document_type,
        confidence=normalize_confidence(data.get("confidence")),
        reasoning=data.get("reasoning"),
    )
