"""Unit tests for per-stage LLM cost tracking."""

from __future__ import annotations

import pytest

from autopilot.modules.processing.cost_tracker import CostTracker, get_pricing


def test_pricing_prefers_longest_prefix() -> None:
    assert get_pricing("gemini-2.5-flash-lite-preview") == get_pricing("gemini-2.5-flash-lite")
    assert get_pricing("gemini-2.5-flash-lite") != get_pricing("gemini-2.5-flash")
    assert get_pricing("claude-sonnet-4@20250514") == get_pricing("claude-sonnet-4")


def test_record_computes_cost() -> None:
    tracker = CostTracker()
    rec = tracker.record("google", "gemini-2.5-pro", input_tokens=1_000_000, output_tokens=100_000, stage="extraction:expert")

    assert rec.cost_usd == pytest.approx(1.25 + 1.00)
    assert rec.total_tokens == 1_100_000


def test_summary_by_stage() -> None:
    tracker = CostTracker()
    tracker.record("google", "gemini-2.5-flash", input_tokens=1000, output_tokens=100, stage="extraction:fast")
    tracker.record("google", "gemini-2.5-pro", input_tokens=1000, output_tokens=100, stage="extraction:expert")
    tracker.record("google", "gemini-2.5-pro", input_tokens=500, output_tokens=50, stage="correction")
    tracker.record("google", "gemini-2.5-flash", input_tokens=10)

    summary = tracker.summary()

    assert summary["calls"] == 4
    assert summary["total_tokens"] == 2760
    assert set(summary["stages"]) == {"extraction:fast", "extraction:expert", "correction", "unspecified"}
    assert summary["stages"]["correction"]["calls"] == 1
    assert summary["total_cost_usd"] == round(tracker.total_cost_usd, 4)
