"""Document models shared by every pipeline stage.

Each extracted-data model declares, next to its fields, which of them the
pipeline treats specially:

  AMOUNT_FIELDS      compared numerically by the consensus engine
  TEXT_FIELDS        compared after whitespace normalisation
  IDENTIFIER_FIELDS  compared ignoring spacing, punctuation and case
  LIST_FIELDS        taken from the expert tier when non-empty
  ESSENTIAL_FIELDS   must be present for a document to be auto-approvable

Field names are snake_case in Python and camelCase on the wire, which is
also the name used in conflict reports, audit checks and review issues.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


# ---------------------------------------------------------------------------
# Input: page images + tenant
# ---------------------------------------------------------------------------


class PageImage(BaseModel):
    """One rendered page of the scanned document."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(..., ge=1)
    data: bytes
    media_type: str = "image/png"


class TenantContext(BaseModel):
    """The company the document is processed for."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    company_name: str | None = None
    vat_number: str | None = None
    country: str = "BE"
    language: str | None = None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class ClassifiedDocumentType(str, Enum):
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    PRO_FORMA = "PRO_FORMA"
    BILL = "BILL"
    RECEIPT = "RECEIPT"
    EXPENSE = "EXPENSE"
    UNKNOWN = "UNKNOWN"


class DocumentFamily(str, Enum):
    """Processing family: types sharing one extraction model and audit."""

    INVOICE = "invoice"
    BILL = "bill"
    RECEIPT = "receipt"
    EXPENSE = "expense"


class DocumentClassification(BaseModel):
    """Output of the classifier, immutable once produced."""

    model_config = ConfigDict(frozen=True)

    document_type: ClassifiedDocumentType = Field(..., description="Detected document type")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Classification confidence 0.0-1.0")
    reasoning: str | None = Field(None, description="Brief explanation of the decision")


# ---------------------------------------------------------------------------
# Nested pieces
# ---------------------------------------------------------------------------


class LineItem(BaseModel):
    model_config = _WIRE_CONFIG

    description: str = ""
    quantity: str | None = None
    unit_price: str | None = None
    vat_rate: str | None = None
    total: str | None = None


class VatBreakdownEntry(BaseModel):
    model_config = _WIRE_CONFIG

    rate: str | None = None
    base: str | None = None
    amount: str | None = None


class ReceiptItem(BaseModel):
    model_config = _WIRE_CONFIG

    name: str = ""
    quantity: str | None = None
    price: str | None = None


class Provenance(BaseModel):
    """Where on the page the agent found its values."""

    model_config = _WIRE_CONFIG

    page: int | None = None
    model: str | None = None
    notes: str | None = None


class CreditNoteMeta(BaseModel):
    model_config = _WIRE_CONFIG

    original_invoice_number: str | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Extracted data: one model per document family
# ---------------------------------------------------------------------------


class ExtractedData(BaseModel):
    """Common base for every extracted-data variant."""

    model_config = _WIRE_CONFIG

    AMOUNT_FIELDS: ClassVar[tuple[str, ...]] = ()
    TEXT_FIELDS: ClassVar[tuple[str, ...]] = ()
    IDENTIFIER_FIELDS: ClassVar[tuple[str, ...]] = ()
    LIST_FIELDS: ClassVar[tuple[str, ...]] = ()
    ESSENTIAL_FIELDS: ClassVar[tuple[str, ...]] = ()

    confidence: float = Field(0.0, ge=0.0, le=1.0)
    extracted_text: str | None = None
    provenance: Provenance | None = None

    @classmethod
    def salient_fields(cls) -> tuple[str, ...]:
        """Fields the consensus engine and retry diff compare."""
        return cls.AMOUNT_FIELDS + cls.IDENTIFIER_FIELDS + cls.TEXT_FIELDS

    @classmethod
    def wire_name(cls, field_name: str) -> str:
        info = cls.model_fields[field_name]
        return info.alias or field_name

    def missing_essential_fields(self) -> list[str]:
        """Wire names of essential fields that are empty."""
        missing = []
        for name in self.ESSENTIAL_FIELDS:
            value: Any = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(self.wire_name(name))
        return missing


class ExtractedInvoiceData(ExtractedData):
    """Invoices, credit notes and pro-formas."""

    AMOUNT_FIELDS = ("subtotal", "total_vat_amount", "total_amount")
    IDENTIFIER_FIELDS = ("vendor_vat_number", "iban", "bic", "payment_reference", "invoice_number")
    TEXT_FIELDS = (
        "vendor_name", "vendor_address", "issue_date", "due_date",
        "payment_terms", "currency",
    )
    LIST_FIELDS = ("line_items", "vat_breakdown")
    ESSENTIAL_FIELDS = ("total_amount", "vendor_name")

    vendor_name: str | None = None
    vendor_vat_number: str | None = None
    vendor_address: str | None = None
    invoice_number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None
    payment_terms: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    currency: str | None = None
    subtotal: str | None = None
    vat_breakdown: list[VatBreakdownEntry] = Field(default_factory=list)
    total_vat_amount: str | None = None
    total_amount: str | None = None
    iban: str | None = None
    bic: str | None = None
    payment_reference: str | None = None
    credit_note_meta: CreditNoteMeta | None = None


class ExtractedBillData(ExtractedData):
    """Supplier bills (incoming invoices booked as costs)."""

    AMOUNT_FIELDS = ("amount", "vat_amount", "total_amount")
    IDENTIFIER_FIELDS = ("supplier_vat_number", "bank_account", "invoice_number")
    TEXT_FIELDS = (
        "supplier_name", "supplier_address", "issue_date", "due_date",
        "currency", "vat_rate", "category", "description", "payment_terms",
    )
    LIST_FIELDS = ("line_items",)
    ESSENTIAL_FIELDS = ("total_amount", "supplier_name")

    supplier_name: str | None = None
    supplier_vat_number: str | None = None
    supplier_address: str | None = None
    invoice_number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None
    currency: str | None = None
    amount: str | None = None
    vat_amount: str | None = None
    vat_rate: str | None = None
    total_amount: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    category: str | None = None
    description: str | None = None
    payment_terms: str | None = None
    bank_account: str | None = None
    notes: str | None = None


class ExtractedReceiptData(ExtractedData):
    """Till receipts."""

    AMOUNT_FIELDS = ("subtotal", "vat_amount", "total_amount")
    IDENTIFIER_FIELDS = ("merchant_vat_number", "receipt_number", "card_last_four")
    TEXT_FIELDS = (
        "merchant_name", "merchant_address", "transaction_date", "transaction_time",
        "currency", "payment_method", "suggested_category",
    )
    LIST_FIELDS = ("items",)
    ESSENTIAL_FIELDS = ("total_amount", "merchant_name")

    merchant_name: str | None = None
    merchant_address: str | None = None
    merchant_vat_number: str | None = None
    receipt_number: str | None = None
    transaction_date: str | None = None
    transaction_time: str | None = None
    items: list[ReceiptItem] = Field(default_factory=list)
    currency: str | None = None
    subtotal: str | None = None
    vat_amount: str | None = None
    total_amount: str | None = None
    payment_method: str | None = None
    card_last_four: str | None = None
    suggested_category: str | None = None


class ExtractedExpenseData(ExtractedData):
    """Expense slips without a formal invoice."""

    AMOUNT_FIELDS = ("total_amount", "vat_amount")
    IDENTIFIER_FIELDS = ("reference",)
    TEXT_FIELDS = (
        "merchant_name", "description", "date", "currency",
        "category", "payment_method", "vat_rate",
    )
    ESSENTIAL_FIELDS = ("total_amount",)

    merchant_name: str | None = None
    description: str | None = None
    date: str | None = None
    total_amount: str | None = None
    currency: str | None = None
    category: str | None = None
    payment_method: str | None = None
    vat_amount: str | None = None
    vat_rate: str | None = None
    reference: str | None = None
