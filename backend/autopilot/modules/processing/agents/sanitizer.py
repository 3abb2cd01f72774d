"""Sanitizer: post-processing of LLM extraction output.

Fixes common LLM output errors before Pydantic validation:
  1. Response wrapped in markdown code fences
  2. Scalar fields wrapped in {"value": ..., "confidence": ...} dicts
  3. Amounts / identifiers returned as JSON numbers instead of strings
  4. List fields returned as null instead of []
  5. Confidence as a percentage ("92%", 92) instead of 0.0-1.0
  6. Whole payload wrapped in a {"data": {...}} / {"extraction": {...}} envelope
"""

from __future__ import annotations

from typing import Any

# Keys the model sometimes wraps the real payload in
_ENVELOPE_KEYS = ("data", "extraction", "result", "document")

# Keys that hold lists of nested objects, in either naming convention
_LIST_KEYS = {
    "line_items", "lineItems", "vat_breakdown", "vatBreakdown", "items",
}

# Keys that must stay structured (nested objects)
_OBJECT_KEYS = {"provenance", "credit_note_meta", "creditNoteMeta"}


# ---------------------------------------------------------------------------
# Helper: strip markdown code fences from LLM output
# ---------------------------------------------------------------------------

def strip_code_fences(raw_text: str) -> str:
    """Strip markdown code fences (```json ... ```) from LLM response."""
    text = raw_text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


# ---------------------------------------------------------------------------
# Core sanitizer
# ---------------------------------------------------------------------------

def sanitize_extraction_json(data: dict[str, Any]) -> dict[str, Any]:
    """Normalise a raw extraction payload so the Extracted*Data models accept it."""
    data = _unwrap_envelope(data)

    result: dict[str, Any] = {}
    for key, val in data.items():
        if key == "confidence":
            result[key] = normalize_confidence(val)
        elif key in _LIST_KEYS:
            result[key] = [
                _stringify_scalars(item) for item in (val or []) if isinstance(item, dict)
            ]
        elif key in _OBJECT_KEYS:
            result[key] = val if isinstance(val, dict) else None
        else:
            result[key] = _to_text(_unwrap_value(val))
    return result


def normalize_confidence(value: Any) -> float:
    """'92%' / 92 / 0.92 -> 0.92, clamped to [0, 1]; unreadable -> 0.0.

    Bare numbers are read as percentages only above 1.5; a slightly
    overshooting fraction such as 1.2 clamps to 1.0.
    """
    if isinstance(value, dict):
        value = value.get("value")
    percent = False
    if isinstance(value, str):
        value = value.strip()
        percent = value.endswith("%")
        value = value.rstrip("%")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if percent or number > 1.5:
        number = number / 100
    return min(max(number, 0.0), 1.0)


def _unwrap_envelope(data: dict[str, Any]) -> dict[str, Any]:
    if len(data) == 1:
        key, inner = next(iter(data.items()))
        if key in _ENVELOPE_KEYS and isinstance(inner, dict):
            return inner
    return data


def _unwrap_value(val: Any) -> Any:
    """{"value": "X", "source": "..."} -> "X"."""
    if isinstance(val, dict) and "value" in val:
        return val["value"]
    return val


def _to_text(val: Any) -> Any:
    if isinstance(val, bool):
        return str(val).lower()
    if isinstance(val, (int, float)):
        return str(val)
    if isinstance(val, str):
        stripped = val.strip()
        return stripped if stripped and stripped.lower() not in ("null", "none", "n/a") else None
    if isinstance(val, list):
        parts = [str(_unwrap_value(v)) for v in val if _unwrap_value(v) is not None]
        return "; ".join(parts) if parts else None
    return val


def _stringify_scalars(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _to_text(_unwrap_value(v)) for k, v in item.items()}
