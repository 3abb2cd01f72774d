"""Unit tests for LLM output sanitizing."""

from __future__ import annotations

import pytest

from autopilot.modules.processing.agents.base import BaseAgent
from autopilot.modules.processing.agents.sanitizer import (
    normalize_confidence,
    sanitize_extraction_json,
    strip_code_fences,
)
from autopilot.modules.processing.schemas import ExtractedInvoiceData


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_json_rejects_non_objects() -> None:
    assert BaseAgent.parse_json('```json\n{"totalAmount": "12.00"}\n```') == {"totalAmount": "12.00"}
    with pytest.raises(ValueError):
        BaseAgent.parse_json("[1, 2, 3]")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("92%", 0.92), (92, 0.92), (0.92, 0.92), ("0.5", 0.5), (150, 1.0), (-1, 0.0), ("high", 0.0), (None, 0.0),
        (1.5, 1.0), ("1.2", 1.0), ("1%", 0.01),
    ],
)
def test_normalize_confidence(raw, expected: float) -> None:
    assert normalize_confidence(raw) == pytest.approx(expected)


def test_sanitize_fixes_common_llm_mistakes() -> None:
    raw = {
        "data": {
            "vendorName": {"value": "Acme BV", "confidence": 0.9},
            "totalAmount": 1210.0,
            "subtotal": "1.000,00",
            "iban": "null",
            "dueDate": "N/A",
            "paymentTerms": ["30 days", "net"],
            "lineItems": [{"description": "Consulting", "quantity": 8, "total": {"value": "800.00"}}, "junk"],
            "vatBreakdown": None,
            "provenance": {"page": 1, "notes": "totals block"},
            "confidence": "95%",
        },
    }

    clean = sanitize_extraction_json(raw)

    assert clean["vendorName"] == "Acme BV"
    assert clean["totalAmount"] == "1210.0"
    assert clean["subtotal"] == "1.000,00"
    assert clean["iban"] is None
    assert clean["dueDate"] is None
    assert clean["paymentTerms"] == "30 days; net"
    assert clean["lineItems"] == [{"description": "Consulting", "quantity": "8", "total": "800.00"}]
    assert clean["vatBreakdown"] == []
    assert clean["provenance"] == {"page": 1, "notes": "totals block"}
    assert clean["confidence"] == pytest.approx(0.95)

    invoice = ExtractedInvoiceData.model_validate(clean)
    assert invoice.line_items[0].quantity == "8"
    assert invoice.provenance.page == 1


def test_multi_key_payload_is_not_unwrapped() -> None:
    raw = {"data": {"x": 1}, "vendorName": "Acme"}
    assert sanitize_extraction_json(raw)["vendorName"] == "Acme"
