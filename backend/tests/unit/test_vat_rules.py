"""Unit tests for VAT jurisdictions and date-gated rate rules."""

from __future__ import annotations

from datetime import date

from autopilot.modules.processing.agents.vat_rules import (
    BELGIAN_VAT_REFORM_DATE,
    BELGIUM,
    JURISDICTIONS,
    VatJurisdiction,
    format_rate,
    get_jurisdiction,
    register_jurisdiction,
)


def test_belgian_rates() -> None:
    assert BELGIUM.standard_rates_bp == (0, 600, 1200, 2100)
    assert BELGIUM.rates_label == "0%, 6%, 12%, 21%"
    assert BELGIAN_VAT_REFORM_DATE == date(2026, 3, 1)


def test_nearest_rate_prefers_lower_on_tie() -> None:
    assert BELGIUM.nearest_rate(2080) == 2100
    assert BELGIUM.nearest_rate(900) == 600


def test_rule_windows_are_half_open() -> None:
    pre, post = BELGIUM.rules
    assert pre.in_force(date(2026, 2, 28))
    assert not pre.in_force(BELGIAN_VAT_REFORM_DATE)
    assert post.in_force(BELGIAN_VAT_REFORM_DATE)
    assert not post.in_force(date(2026, 2, 28))
    # Unknown date: every rule applies
    assert pre.in_force(None) and post.in_force(None)


def test_category_matching_is_normalised() -> None:
    rule = BELGIUM.rule_for(1200, "Take-Away", date(2026, 4, 1))
    assert rule is not None
    assert BELGIUM.rule_for(1200, "Take-Away", date(2025, 4, 1)) is None
    assert BELGIUM.rule_for(1200, "Office supplies", date(2026, 4, 1)) is None
    assert BELGIUM.rule_for(2100, "restaurant", date(2026, 4, 1)) is None


def test_get_jurisdiction_falls_back_to_default() -> None:
    assert get_jurisdiction("be") is BELGIUM
    assert get_jurisdiction(None) is BELGIUM
    assert get_jurisdiction("ZZ").country == "BE"


def test_register_jurisdiction() -> None:
    luxembourg = VatJurisdiction(country="lu", name="Luxembourgish", standard_rates_bp=(0, 300, 800, 1400, 1700))
    register_jurisdiction(luxembourg)
    try:
        assert get_jurisdiction("LU") is luxembourg
        assert luxembourg.nearest_rate(1650) == 1700
    finally:
        JURISDICTIONS.pop("LU")


def test_format_rate() -> None:
    assert format_rate(2100) == "21%"
    assert format_rate(550) == "5.5%"
