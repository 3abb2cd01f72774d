"""VAT jurisdictions: standard rate sets plus date-gated category rules.

A jurisdiction lists its standard rates in basis points.  Rates whose
legitimacy depends on what was sold and when carry a small rule table:
each rule names the rate, the categories that qualify, the window in which
the rule is in force and the audit message to record when it matches.

Adding a country or a reform is a data change:

    register_jurisdiction(VatJurisdiction(
        country="LU", name="Luxembourgish", standard_rates_bp=(0, 300, 800, 1400, 1700),
    ))
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class VatRateRule:
    """One row of a jurisdiction's rate eligibility table."""

    rate_bp: int
    categories: frozenset[str]
    message: str
    effective_from: date | None = None  # inclusive
    effective_until: date | None = None  # exclusive

    def in_force(self, on: date | None) -> bool:
        if on is None:
            return True
        if self.effective_from is not None and on < self.effective_from:
            return False
        if self.effective_until is not None and on >= self.effective_until:
            return False
        return True

    def covers(self, category: str | None) -> bool:
        if not category:
            return False
        normalized = _normalize_category(category)
        return any(keyword in normalized for keyword in self.categories)


@dataclass(frozen=True)
class VatJurisdiction:
    country: str
    name: str
    standard_rates_bp: tuple[int, ...]
    rules: tuple[VatRateRule, ...] = field(default_factory=tuple)
    # Wording used in correction feedback
    iban_example: str = ""
    vat_number_format: str = ""
    registry_name: str = "business registry"

    @property
    def rates_label(self) -> str:
        return ", ".join(format_rate(bp) for bp in self.standard_rates_bp)

    def nearest_rate(self, rate_bp: int) -> int:
        return min(self.standard_rates_bp, key=lambda r: (abs(r - rate_bp), r))

    def has_rules_for(self, rate_bp: int) -> bool:
        return any(rule.rate_bp == rate_bp for rule in self.rules)

    def rule_for(self, rate_bp: int, category: str | None, on: date | None) -> VatRateRule | None:
        """First rule for this rate that is in force on the date and covers the category."""
        for rule in self.rules:
            if rule.rate_bp == rate_bp and rule.in_force(on) and rule.covers(category):
                return rule
        return None


def format_rate(rate_bp: int) -> str:
    return f"{rate_bp / 100:g}%"


def _normalize_category(category: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", category.lower()).strip()


# ---------------------------------------------------------------------------
# Belgium: 12% reform of 1 March 2026
# ---------------------------------------------------------------------------

BELGIAN_VAT_REFORM_DATE = date(2026, 3, 1)

HOSPITALITY_CATEGORIES = frozenset({
    "horeca", "restaurant", "catering", "meal", "food", "hospitality", "cafe",
})
ACCOMMODATION_CATEGORIES = frozenset({
    "hotel", "accommodation", "lodging", "camping",
})
TAKEAWAY_CATEGORIES = frozenset({
    "takeaway", "take away", "delivery",
})

BELGIUM = VatJurisdiction(
    country="BE",
    name="Belgian",
    standard_rates_bp=(0, 600, 1200, 2100),
    iban_example="BE68 5390 0754 7034",
    vat_number_format="BE + 10 digits (e.g., BE0123456789)",
    registry_name="Belgian registry (KBO/CBE)",
    rules=(
        VatRateRule(
            rate_bp=1200,
            categories=HOSPITALITY_CATEGORIES,
            effective_until=BELGIAN_VAT_REFORM_DATE,
            message="12% rate valid for Horeca restaurant and catering services (pre-reform)",
        ),
        VatRateRule(
            rate_bp=1200,
            categories=HOSPITALITY_CATEGORIES | ACCOMMODATION_CATEGORIES | TAKEAWAY_CATEGORIES,
            effective_from=BELGIAN_VAT_REFORM_DATE,
            message=(
                "12% rate valid for Horeca, accommodation and takeaway meals "
                "(March 2026 reform)"
            ),
        ),
    ),
)

NETHERLANDS = VatJurisdiction(
    country="NL",
    name="Dutch",
    standard_rates_bp=(0, 900, 2100),
    iban_example="NL91 ABNA 0417 1643 00",
    vat_number_format="NL + 9 digits + B + 2 digits (e.g., NL123456789B01)",
    registry_name="Dutch trade register (KVK)",
)


JURISDICTIONS: dict[str, VatJurisdiction] = {
    BELGIUM.country: BELGIUM,
    NETHERLANDS.country: NETHERLANDS,
}


def register_jurisdiction(jurisdiction: VatJurisdiction) -> None:
    JURISDICTIONS[jurisdiction.country.upper()] = jurisdiction


def get_jurisdiction(country: str | None, default: str = "BE") -> VatJurisdiction:
    """Look up a jurisdiction, falling back to the default country."""
    code = (country or default).upper()
    if code not in JURISDICTIONS:
        logger.warning("VAT: unknown jurisdiction, using default", country=code, default=default)
        code = default.upper()
    return JURISDICTIONS[code]
