"""Unit tests for the LLM-backed agents with the provider call stubbed out."""

from __future__ import annotations

import json

import pytest

from autopilot.modules.processing.agents.base import default_model
from autopilot.modules.processing.agents.classifier import LlmClassifierAgent, parse_classification
from autopilot.modules.processing.agents.extractors import (
    BillExtractionAgent,
    ExtractionError,
    InvoiceExtractionAgent,
    get_extractor,
    schema_hint,
)
from autopilot.modules.processing.agents.judgment import LlmJudgmentBackend
from autopilot.modules.processing.schemas import (
    ClassifiedDocumentType,
    DocumentFamily,
    ExtractedInvoiceData,
)


def _stub_llm(monkeypatch, agent, content):
    """Replace the provider call; returns the list of recorded calls."""
    calls: list[dict] = []

    async def fake_acall_llm(system_prompt, user_content, images=None, **kwargs):
        calls.append({"system": system_prompt, "user": user_content, "images": images, **kwargs})
        if isinstance(content, Exception):
            raise content
        return {"content": content, "input_tokens": 0, "output_tokens": 0}

    monkeypatch.setattr(agent, "acall_llm", fake_acall_llm)
    return calls


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def test_parse_classification() -> None:
    parsed = parse_classification({"documentType": "credit-note", "confidence": "88%", "reasoning": "CN header"})
    assert parsed.document_type == ClassifiedDocumentType.CREDIT_NOTE
    assert parsed.confidence == pytest.approx(0.88)

    assert parse_classification({"document_type": "letter", "confidence": 0.9}).document_type == (
        ClassifiedDocumentType.UNKNOWN
    )


async def test_classifier_sends_first_pages_only(monkeypatch, images, tenant) -> None:
    agent = LlmClassifierAgent(provider="google")
    calls = _stub_llm(monkeypatch, agent, {"documentType": "BILL", "confidence": 0.91})

    result = await agent.classify(images * 4, tenant)

    assert result.document_type == ClassifiedDocumentType.BILL
    assert len(calls[0]["images"]) == 2
    assert "Ledger Test BV" in calls[0]["user"]
    assert calls[0]["stage"] == "classification"


async def test_classifier_failure_becomes_unknown(monkeypatch, images, tenant) -> None:
    agent = LlmClassifierAgent(provider="google")
    _stub_llm(monkeypatch, agent, json.JSONDecodeError("Expecting value", "", 0))

    result = await agent.classify(images, tenant)

    assert result.document_type == ClassifiedDocumentType.UNKNOWN
    assert result.confidence == 0.0


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def test_schema_hint_uses_wire_names() -> None:
    hint = json.loads(schema_hint(ExtractedInvoiceData))
    assert "totalAmount" in hint
    assert hint["lineItems"] == ["..."]
    assert hint["confidence"] == 0.0


async def test_extract_validates_sanitized_output(monkeypatch, images) -> None:
    agent = InvoiceExtractionAgent(provider="google", tier="fast")
    calls = _stub_llm(monkeypatch, agent, {"vendorName": "Acme BV", "totalAmount": 1210, "confidence": 90})

    invoice = await agent.extract(images)

    assert isinstance(invoice, ExtractedInvoiceData)
    assert invoice.total_amount == "1210"
    assert invoice.confidence == pytest.approx(0.9)
    assert calls[0]["stage"] == "extraction:fast"
    assert calls[0]["doc_type"] == "invoice"
    assert agent.model == default_model("google", "fast")


async def test_extract_with_feedback_sends_previous_extraction(monkeypatch, images, make_invoice) -> None:
    agent = InvoiceExtractionAgent(provider="anthropic")
    calls = _stub_llm(monkeypatch, agent, {"vendorName": "Acme BV", "totalAmount": "1210.00"})

    await agent.extract_with_feedback(images, make_invoice(total_amount="1270.00"), "CORRECTION REQUIRED")

    user = calls[0]["user"]
    assert user.startswith("CORRECTION REQUIRED")
    assert '"totalAmount": "1270.00"' in user
    assert calls[0]["stage"] == "correction"


async def test_unparseable_output_raises_extraction_error(monkeypatch, images) -> None:
    agent = BillExtractionAgent(provider="google")
    _stub_llm(monkeypatch, agent, ValueError("Expected a JSON object, got list"))

    with pytest.raises(ExtractionError, match="unparseable"):
        await agent.extract(images)


async def test_invalid_output_raises_extraction_error(monkeypatch, images) -> None:
    agent = InvoiceExtractionAgent(provider="google")
    _stub_llm(monkeypatch, agent, {"totalAmount": "10.00", "provenance": {"page": "first page"}})

    with pytest.raises(ExtractionError, match="failed validation"):
        await agent.extract(images)


def test_get_extractor() -> None:
    agent = get_extractor(DocumentFamily.RECEIPT, "expert", provider="anthropic")
    assert agent.family == DocumentFamily.RECEIPT
    assert agent.model == default_model("anthropic", "expert")


def test_unsupported_provider() -> None:
    agent = InvoiceExtractionAgent(provider="openai", model="gpt-x")
    with pytest.raises(ValueError, match="Unsupported provider"):
        agent.call_llm("system", "user")


# ---------------------------------------------------------------------------
# Judgment backend
# ---------------------------------------------------------------------------


async def test_judgment_backend_returns_text(monkeypatch) -> None:
    backend = LlmJudgmentBackend(provider="google")
    calls = _stub_llm(monkeypatch, backend, "AUTO_APPROVE")

    assert await backend.complete("system", "report") == "AUTO_APPROVE"
    assert calls[0]["response_json"] is False
    assert calls[0]["stage"] == "judgment"
