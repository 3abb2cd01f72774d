"""Agent 3: Extraction Auditor.

Rule-based, no LLM calls.  Runs a battery of independent checks against a
merged extraction and aggregates them into an AuditReport:

  MATH            subtotal + VAT = total, line item arithmetic
  CHECKSUM_IBAN   ISO 13616 mod-97
  CHECKSUM_OGM    Belgian structured communication / RF creditor reference
  VAT_RATE        implied rate vs the jurisdiction's rate table
  COMPANY_EXISTS  counterparty VAT number known to the business registry
  COMPANY_NAME    extracted name matches the registered legal name

Registry checks are optional (external validation toggle) and never
critical.  Check types outside ``enabled_checks`` are left out of the report.
"""

from __future__ import annotations

import re
from decimal import Decimal

import structlog
from rapidfuzz import fuzz

from autopilot.modules.processing.agent_schemas import (
    AuditCheck,
    AuditReport,
    CheckType,
)
from autopilot.modules.processing.agents.validators import (
    ROUNDING_TOLERANCE,
    audit_iban,
    audit_payment_reference,
    verify_line_item_calculation,
    verify_line_items,
    verify_totals,
    verify_vat_rate,
)
from autopilot.modules.processing.agents.vat_rules import BELGIUM, VatJurisdiction
from autopilot.modules.processing.money import parse_amount, parse_decimal, parse_iso_date
from autopilot.modules.processing.registry import RegistryLookup
from autopilot.modules.processing.schemas import (
    ExtractedBillData,
    ExtractedData,
    ExtractedExpenseData,
    ExtractedInvoiceData,
    ExtractedReceiptData,
    LineItem,
)

logger = structlog.get_logger()

ALL_CHECKS = frozenset(CheckType)

# Name similarity (0-100) at which the registry name counts as the same company
NAME_MATCH_THRESHOLD = 85

_LEGAL_FORMS = {
    "bv", "bvba", "nv", "sa", "srl", "sprl", "cv", "scrl", "vof", "comm", "commv",
    "vzw", "asbl", "ltd", "gmbh", "sarl", "sas", "inc", "llc", "plc",
}

# Bill lines for fees already contained in another line's price
_INCLUDED_FEE_PREFIXES = ("incl ", "incl.", "included ", "inclusief ")
_INCLUDED_FEE_KEYWORDS = ("recupel", "auvibel")


class AuditorAgent:
    """Agent 3: Legally-aware extraction auditor.

    Holds only read-only configuration; every audit call is independent.
    """

    agent_name = "Auditor"

    def __init__(
        self,
        jurisdiction: VatJurisdiction = BELGIUM,
        *,
        enabled_checks: frozenset[CheckType] = ALL_CHECKS,
        registry: RegistryLookup | None = None,
        external_validation: bool = False,
        vat_rate_tolerance_bp: int = 50,
        rounding_tolerance: Decimal = ROUNDING_TOLERANCE,
    ) -> None:
        self.jurisdiction = jurisdiction
        self.enabled_checks = enabled_checks
        self.registry = registry
        self.external_validation = external_validation
        self.vat_rate_tolerance_bp = vat_rate_tolerance_bp
        self.rounding_tolerance = rounding_tolerance

    async def audit(self, extraction: ExtractedData) -> AuditReport:
        """Dispatch to the audit for the extraction's document family."""
        if isinstance(extraction, ExtractedInvoiceData):
            return await self.audit_invoice(extraction)
        if isinstance(extraction, ExtractedBillData):
            return await self.audit_bill(extraction)
        if isinstance(extraction, ExtractedReceiptData):
            return await self.audit_receipt(extraction)
        if isinstance(extraction, ExtractedExpenseData):
            return await self.audit_expense(extraction)
        raise TypeError(f"No audit defined for {type(extraction).__name__}")

    # ------------------------------------------------------------------
    # Per-family audits
    # ------------------------------------------------------------------

    async def audit_invoice(self, invoice: ExtractedInvoiceData) -> AuditReport:
        subtotal = parse_amount(invoice.subtotal)
        vat_amount = parse_amount(invoice.total_vat_amount)
        total = parse_amount(invoice.total_amount)

        checks = [verify_totals(subtotal, vat_amount, total, tolerance=self.rounding_tolerance)]
        checks += self._line_item_checks(invoice.line_items, subtotal)
        checks.append(audit_payment_reference(invoice.payment_reference))
        checks.append(audit_iban(invoice.iban))
        checks.append(verify_vat_rate(
            subtotal, vat_amount,
            jurisdiction=self.jurisdiction,
            document_date=parse_iso_date(invoice.issue_date),
            category=None,
            tolerance_bp=self.vat_rate_tolerance_bp,
            field="totalVatAmount",
        ))
        checks += await self._registry_checks(
            invoice.vendor_vat_number, invoice.vendor_name,
            vat_field="vendorVatNumber", name_field="vendorName",
        )
        return self._report("invoice", checks)

    async def audit_bill(self, bill: ExtractedBillData) -> AuditReport:
        net, vat_amount, gross = _resolve_bill_amounts(bill)

        checks = [verify_totals(net, vat_amount, gross, tolerance=self.rounding_tolerance)]
        lines = [item for item in bill.line_items if not _is_included_fee(item)]
        checks += self._line_item_checks(lines, net)
        checks.append(audit_iban(bill.bank_account, field="bankAccount"))
        checks.append(verify_vat_rate(
            net, vat_amount,
            jurisdiction=self.jurisdiction,
            document_date=parse_iso_date(bill.issue_date),
            category=bill.category,
            tolerance_bp=self.vat_rate_tolerance_bp,
        ))
        checks += await self._registry_checks(
            bill.supplier_vat_number, bill.supplier_name,
            vat_field="supplierVatNumber", name_field="supplierName",
        )
        return self._report("bill", checks)

    async def audit_receipt(self, receipt: ExtractedReceiptData) -> AuditReport:
        subtotal = parse_amount(receipt.subtotal)
        vat_amount = parse_amount(receipt.vat_amount)
        total = parse_amount(receipt.total_amount)

        checks = [
            verify_totals(subtotal, vat_amount, total, tolerance=self.rounding_tolerance),
            verify_vat_rate(
                subtotal, vat_amount,
                jurisdiction=self.jurisdiction,
                document_date=parse_iso_date(receipt.transaction_date),
                category=receipt.suggested_category,
                tolerance_bp=self.vat_rate_tolerance_bp,
            ),
        ]
        checks += await self._registry_checks(
            receipt.merchant_vat_number, receipt.merchant_name,
            vat_field="merchantVatNumber", name_field="merchantName",
        )
        return self._report("receipt", checks)

    async def audit_expense(self, expense: ExtractedExpenseData) -> AuditReport:
        vat_amount = parse_amount(expense.vat_amount)
        total = parse_amount(expense.total_amount)
        # Expense slips rarely print a subtotal
        subtotal = total - vat_amount if total is not None and vat_amount is not None else None

        checks = [
            verify_totals(subtotal, vat_amount, total, tolerance=self.rounding_tolerance),
            verify_vat_rate(
                subtotal, vat_amount,
                jurisdiction=self.jurisdiction,
                document_date=parse_iso_date(expense.date),
                category=expense.category,
                tolerance_bp=self.vat_rate_tolerance_bp,
            ),
        ]
        return self._report("expense", checks)

    # ------------------------------------------------------------------
    # Shared pieces
    # ------------------------------------------------------------------

    def _line_item_checks(self, items: list[LineItem], subtotal: Decimal | None) -> list[AuditCheck]:
        if not items:
            return []

        checks = [
            verify_line_item_calculation(
                parse_decimal(item.quantity),
                parse_decimal(item.unit_price),
                parse_amount(item.total),
                index,
            )
            for index, item in enumerate(items)
        ]
        line_totals = [parse_amount(item.total) for item in items]
        if all(t is not None for t in line_totals):
            checks.append(verify_line_items(line_totals, subtotal))
        return checks

    async def _registry_checks(
        self,
        vat_number: str | None,
        name: str | None,
        *,
        vat_field: str,
        name_field: str,
    ) -> list[AuditCheck]:
        wants_exists = CheckType.COMPANY_EXISTS in self.enabled_checks
        wants_name = CheckType.COMPANY_NAME in self.enabled_checks
        if not wants_exists and not wants_name:
            return []

        def both_incomplete(reason: str) -> list[AuditCheck]:
            return [
                AuditCheck.incomplete(CheckType.COMPANY_EXISTS, vat_field, reason),
                AuditCheck.incomplete(CheckType.COMPANY_NAME, name_field, reason),
            ]

        if not self.external_validation or self.registry is None:
            return both_incomplete("External registry validation disabled")
        if not vat_number or not vat_number.strip():
            return both_incomplete("No VAT number extracted")

        try:
            entity = await self.registry.search_by_vat(vat_number)
        except Exception as e:
            # Registry outages and timeouts must never block the pipeline
            logger.warning("Auditor: registry lookup failed", vat_number=vat_number, error=str(e))
            return both_incomplete(f"Registry unavailable: {e}")

        if entity is None:
            return [
                AuditCheck.failed(
                    CheckType.COMPANY_EXISTS, vat_field,
                    f"VAT number {vat_number} not found in the business registry",
                    hint="Re-read the VAT number in the document header or footer; "
                         "Belgian format is BE + 10 digits",
                    actual=vat_number,
                ),
                AuditCheck.incomplete(
                    CheckType.COMPANY_NAME, name_field, "No registry entry to compare the name against",
                ),
            ]

        checks = [AuditCheck.passed(
            CheckType.COMPANY_EXISTS, vat_field,
            f"{entity.vat_number} registered to {entity.legal_name}",
        )]
        if not name:
            checks.append(AuditCheck.incomplete(CheckType.COMPANY_NAME, name_field, "No company name extracted"))
        elif name_similarity(name, entity.legal_name) >= NAME_MATCH_THRESHOLD:
            checks.append(AuditCheck.passed(
                CheckType.COMPANY_NAME, name_field, f"'{name}' matches registered name",
            ))
        else:
            checks.append(AuditCheck.failed(
                CheckType.COMPANY_NAME, name_field,
                f"'{name}' does not match registered name '{entity.legal_name}'",
                hint="Commercial and legal names can differ; check the name printed next to the VAT number",
                expected=entity.legal_name,
                actual=name,
            ))
        return checks

    def _report(self, family: str, checks: list[AuditCheck]) -> AuditReport:
        report = AuditReport.from_checks([c for c in checks if c.type in self.enabled_checks])
        logger.info(
            "Auditor: audit complete",
            doc_type=family,
            status=report.overall_status.value,
            passed=report.passed_count,
            failed=report.failed_count,
            warnings=report.warning_count,
            incomplete=report.incomplete_count,
            critical=len(report.critical_failures),
        )
        return report


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_bill_amounts(bill: ExtractedBillData) -> tuple[Decimal | None, Decimal | None, Decimal | None]:
    """(net, vat, gross) for a bill.

    ``amount`` is the net amount when it differs from the total; otherwise
    the net is derived from gross minus VAT.
    """
    amount = parse_amount(bill.amount)
    explicit_total = parse_amount(bill.total_amount)
    vat_amount = parse_amount(bill.vat_amount)
    gross = explicit_total if explicit_total is not None else amount

    if explicit_total is not None and amount is not None and explicit_total != amount:
        net = amount
    elif gross is not None and vat_amount is not None:
        net = gross - vat_amount
    else:
        net = None
    return net, vat_amount, gross


def _is_included_fee(item: LineItem) -> bool:
    normalized = re.sub(r"[\n\t]", " ", item.description.lower()).strip()
    return normalized.startswith(_INCLUDED_FEE_PREFIXES) or any(
        keyword in normalized for keyword in _INCLUDED_FEE_KEYWORDS
    )


def _normalize_company_name(name: str) -> str:
    tokens = re.sub(r"[^\w\s]", " ", name.lower()).split()
    return " ".join(t for t in tokens if t not in _LEGAL_FORMS)


def name_similarity(extracted: str, registered: str) -> float:
    """Similarity 0-100 between two company names, legal forms ignored."""
    a = _normalize_company_name(extracted)
    b = _normalize_company_name(registered)
    if not a or not b:
        return 0.0
    tokens_a, tokens_b = set(a.split()), set(b.split())
    if tokens_a <= tokens_b or tokens_b <= tokens_a:
        return 100.0
    return fuzz.token_sort_ratio(a, b)
