"""Shared test fixtures for the autopilot test suite.

No test talks to an LLM provider or the business registry: classifiers,
extraction agents, registries and judgment backends are replaced by the
in-memory fakes below.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from autopilot.modules.processing.agents.classifier import DocumentClassifier
from autopilot.modules.processing.agents.extractors import ExtractionAgent
from autopilot.modules.processing.agents.judgment import JudgmentBackend
from autopilot.modules.processing.registry import RegistryEntity, RegistryLookup
from autopilot.modules.processing.schemas import (
    ClassifiedDocumentType,
    DocumentClassification,
    ExtractedInvoiceData,
    ExtractedReceiptData,
    PageImage,
    TenantContext,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClassifier(DocumentClassifier):
    def __init__(
        self,
        document_type: ClassifiedDocumentType = ClassifiedDocumentType.INVOICE,
        confidence: float = 0.95,
        error: Exception | None = None,
    ) -> None:
        self.document_type = document_type
        self.confidence = confidence
        self.error = error
        self.calls = 0

    async def classify(self, images, tenant_context) -> DocumentClassification:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return DocumentClassification(
            document_type=self.document_type,
            confidence=self.confidence,
            reasoning="fake",
        )


class FakeExtractor(ExtractionAgent):
    """Returns a canned extraction (or raises) and records every call.

    ``corrections`` are consumed one per ``extract_with_feedback`` call;
    an exception in the list is raised instead of returned.
    """

    def __init__(
        self,
        result: Any = None,
        *,
        error: Exception | None = None,
        corrections: list[Any] | None = None,
        name: str = "Fake-Extractor",
    ) -> None:
        self.result = result
        self.error = error
        self.corrections = list(corrections or [])
        self.agent_name = name
        self.calls = 0
        self.feedback: list[str] = []

    async def extract(self, images):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def extract_with_feedback(self, images, previous, feedback):
        self.feedback.append(feedback)
        outcome = self.corrections.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeRegistry(RegistryLookup):
    def __init__(self, entities: dict[str, str] | None = None, error: Exception | None = None) -> None:
        self.entities = entities or {}
        self.error = error
        self.lookups: list[str] = []

    async def search_by_vat(self, vat_number: str) -> RegistryEntity | None:
        self.lookups.append(vat_number)
        if self.error is not None:
            raise self.error
        name = self.entities.get(vat_number)
        if name is None:
            return None
        return RegistryEntity(vat_number=vat_number, legal_name=name)


class FakeJudgmentBackend(JudgmentBackend):
    def __init__(self, response: str = "", error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        if self.error is not None:
            raise self.error
        return self.response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def images() -> list[PageImage]:
    return [PageImage(page_number=1, data=b"\x89PNG fake page")]


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(tenant_id="tenant-1", company_name="Ledger Test BV", country="BE")


@pytest.fixture
def make_invoice() -> Callable[..., ExtractedInvoiceData]:
    """A consistent Belgian invoice: 1000 + 21% VAT, valid IBAN and OGM."""

    def _make(**overrides: Any) -> ExtractedInvoiceData:
        values: dict[str, Any] = {
            "vendor_name": "Acme BV",
            "vendor_vat_number": "BE0123456789",
            "invoice_number": "INV-2025-001",
            "issue_date": "2025-06-15",
            "currency": "EUR",
            "subtotal": "1000.00",
            "total_vat_amount": "210.00",
            "total_amount": "1210.00",
            "iban": "BE68539007547034",
            "payment_reference": "+++123/4567/89002+++",
            "confidence": 0.95,
        }
        values.update(overrides)
        return ExtractedInvoiceData(**values)

    return _make


@pytest.fixture
def make_receipt() -> Callable[..., ExtractedReceiptData]:
    """A Horeca receipt at 12% dated before the March 2026 reform."""

    def _make(**overrides: Any) -> ExtractedReceiptData:
        values: dict[str, Any] = {
            "merchant_name": "Brasserie De Markt",
            "transaction_date": "2025-11-20",
            "subtotal": "100.00",
            "vat_amount": "12.00",
            "total_amount": "112.00",
            "suggested_category": "horeca",
            "confidence": 0.9,
        }
        values.update(overrides)
        return ExtractedReceiptData(**values)

    return _make
