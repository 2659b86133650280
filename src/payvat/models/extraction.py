"""Typed results produced by one extraction pass.

``ExtractionResult`` is the transient per-attempt result: it is folded into the
document row and the audit log and then discarded. Fields serialise with the
camelCase names the web client expects (``salesVAT``, ``invoiceDate`` ...).

The normalizer never returns a bare result. It returns a
``NormalizationOutcome`` tagged with the regime that produced it, so callers
can tell a parsed model answer from a regex fallback or an empty result.
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DocumentType(StrEnum):
    INVOICE = "INVOICE"
    RECEIPT = "RECEIPT"
    CREDIT_NOTE = "CREDIT_NOTE"
    STATEMENT = "STATEMENT"
    OTHER = "OTHER"

    @classmethod
    def coerce(cls, value: object) -> "DocumentType":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.OTHER


class VatCategory(StrEnum):
    SALES = "SALES"
    PURCHASES = "PURCHASES"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_document_category(cls, category: str | None) -> "VatCategory":
        """Map a document category such as ``SALES_INVOICE`` onto a VAT leg."""
        return cls.SALES if "SALES" in (category or "").upper() else cls.PURCHASES


class TotalProvenance(StrEnum):
    EXPLICIT = "explicit"
    VAT_ESTIMATE = "vat_estimate"
    TEXT_SCAN = "text_scan"
    NONE = "none"


# ---------------------------------------------------------------------------
# Extraction payload
# ---------------------------------------------------------------------------


class BusinessDetails(CamelModel):
    business_name: str | None = None
    vat_number: str | None = None
    address: str | None = None


class TransactionData(CamelModel):
    date: str | None = None
    invoice_number: str | None = None
    currency: str = "EUR"
    total: float | None = None


class LineItem(CamelModel):
    description: str = ""
    quantity: float | None = None
    unit_price: float | None = None
    vat_rate: float | None = None
    vat_amount: float | None = None
    total_amount: float | None = None


class VatBreakdown(CamelModel):
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float | None = None
    total_vat_amount: float | None = None
    grand_total: float | None = None


class Classification(CamelModel):
    category: VatCategory = VatCategory.UNKNOWN
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class ExtractionResult(CamelModel):
    """VAT data extracted from a single document in a single processing pass."""

    sales_vat: list[float] = Field(default_factory=list, alias="salesVAT")
    purchase_vat: list[float] = Field(default_factory=list, alias="purchaseVAT")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_text: list[str] = Field(default_factory=list)
    invoice_date: str | None = None
    total_amount: float | None = None
    invoice_total: float | None = None
    transaction_data: TransactionData | None = None
    document_type: DocumentType = DocumentType.OTHER
    vat_rate: float | None = None
    vat_data: VatBreakdown | None = None
    business_details: BusinessDetails | None = None
    classification: Classification | None = None
    validation_flags: list[str] = Field(default_factory=list)

    @property
    def all_amounts(self) -> list[float]:
        return [*self.sales_vat, *self.purchase_vat]

    @property
    def has_amounts(self) -> bool:
        return bool(self.sales_vat or self.purchase_vat)

    @property
    def vat_sum(self) -> float:
        return round(sum(self.all_amounts), 2)

    @property
    def evidence_text(self) -> str:
        return " ".join(self.extracted_text)

    @classmethod
    def empty(cls, note: str | None = None) -> "ExtractionResult":
        return cls(extracted_text=[note] if note else [])


# ---------------------------------------------------------------------------
# Normalization outcomes
# ---------------------------------------------------------------------------


class ParsedOutcome(BaseModel):
    """The model's JSON answer was located and mapped."""

    kind: Literal["parsed"] = "parsed"
    result: ExtractionResult
    verbatim_label: bool = False


class FallbackOutcome(BaseModel):
    """JSON was unusable; amounts came from the regex scan of the raw text."""

    kind: Literal["fallback"] = "fallback"
    result: ExtractionResult
    reason: str


class EmptyOutcome(BaseModel):
    """Neither path produced an amount."""

    kind: Literal["empty"] = "empty"
    result: ExtractionResult = Field(default_factory=ExtractionResult)
    reason: str


NormalizationOutcome = Annotated[
    Union[ParsedOutcome, FallbackOutcome, EmptyOutcome],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Resolver results
# ---------------------------------------------------------------------------


class DateResolution(BaseModel):
    value: date
    confidence: float
    found: bool
    strategy: str | None = None


class TotalResolution(BaseModel):
    amount: float | None = None
    provenance: TotalProvenance = TotalProvenance.NONE

    @property
    def is_estimate(self) -> bool:
        return self.provenance == TotalProvenance.VAT_ESTIMATE
