"""Turns raw model output into a typed, confidence-scored extraction.

Two regimes:

* JSON: the first balanced JSON object in the answer is mapped onto an
  ``ExtractionResult``. Amounts are routed to sales or purchases with the
  document-type heuristics and scored from the model's own confidence.
* Fallback: when no usable JSON is found, or the JSON carries no VAT
  amounts, the raw text is scanned with the Irish VAT regex family.

Zero-rate markers always win: a zero-rated line contributes exactly 0.00.
"""
from __future__ import annotations

from typing import Any

import structlog

from ..llm.response_parser import extract_json_from_response
from ..models.extraction import (
    BusinessDetails,
    Classification,
    DocumentType,
    EmptyOutcome,
    ExtractionResult,
    FallbackOutcome,
    LineItem,
    NormalizationOutcome,
    ParsedOutcome,
    TransactionData,
    VatBreakdown,
    VatCategory,
)
from ..vat.date_parsing import find_date_text
from ..vat.number_parsing import to_amount
from ..vat.patterns import VERBATIM_LABEL, ZERO_RATE, VatLineKind, VatScan, scan_vat_amounts
from .categorization import DocumentAnalysis, analyze_document_type, should_exclude_amount
from .client import RawModelOutput

logger = structlog.get_logger(__name__)

VERBATIM_FLOOR = 0.85
UNLABELED_CAP = 0.84
FALLBACK_CONFIDENCE = {
    VatLineKind.LABELED: 0.7,
    VatLineKind.BREAKDOWN: 0.6,
    VatLineKind.UNLABELED: 0.5,
}
LINE_ITEM_TOLERANCE = 0.02

def normalize(
    raw: RawModelOutput | str,
    category: str,
    *,
    evidence: str | None = None,
) -> NormalizationOutcome:
    """Normalize one model answer.

    ``evidence`` is extra source text (e.g. text pulled from a PDF) scanned
    alongside the model's answer.
    """
    text = raw.content if isinstance(raw, RawModelOutput) else raw
    try:
        data = extract_json_from_response(text)
    except ValueError as exc:
        logger.info("normalizer_json_unavailable", error=str(exc)[:120])
        return _fallback(text, category, base=None, reason="model output contained no JSON object",
                         evidence=evidence)

    result, verbatim = _from_json(data, category, raw_text=text, evidence=evidence)
    if result.has_amounts:
        return ParsedOutcome(result=result, verbatim_label=verbatim)

    return _fallback(text, category, base=result, reason="model JSON contained no VAT amounts",
                     evidence=evidence)


# ---------------------------------------------------------------------------
# JSON regime
# ---------------------------------------------------------------------------


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _business_details(value: Any) -> BusinessDetails:
    raw = _dict(value)
    return BusinessDetails(
        business_name=_text(raw.get("businessName")),
        vat_number=_text(raw.get("vatNumber")),
        address=_text(raw.get("address")),
    )


def _target_category(analysis: DocumentAnalysis, model_category: Any, category: str) -> VatCategory:
    if analysis.suggested_category != VatCategory.UNKNOWN:
        return analysis.suggested_category
    if isinstance(model_category, str) and model_category.upper() in ("SALES", "PURCHASES"):
        return VatCategory(model_category.upper())
    return VatCategory.from_document_category(category)


def _line_items(raw_items: Any) -> list[LineItem]:
    items = []
    for raw_item in raw_items if isinstance(raw_items, list) else []:
        item = _dict(raw_item)
        items.append(LineItem(
            description=str(item.get("description") or ""),
            quantity=to_amount(item.get("quantity")),
            unit_price=to_amount(item.get("unitPrice")),
            vat_rate=to_amount(item.get("vatRate")),
            vat_amount=to_amount(item.get("vatAmount")),
            total_amount=to_amount(item.get("totalAmount")),
        ))
    return items


def _is_zero_rated_item(item: LineItem) -> bool:
    return item.vat_rate == 0 or bool(ZERO_RATE.search(item.description))


def _from_json(data: dict, category: str, *, raw_text: str, evidence: str | None) -> tuple[ExtractionResult, bool]:
    extracted_text = _as_text_list(data.get("extractedText"))
    if evidence:
        extracted_text = [evidence, *extracted_text]
    evidence_text = " ".join(extracted_text)
    analysis = analyze_document_type(evidence_text)

    vat_data_raw = _dict(data.get("vatData"))
    items = _line_items(vat_data_raw.get("lineItems"))
    total_vat = to_amount(vat_data_raw.get("totalVatAmount"))
    vat_data = VatBreakdown(
        line_items=items,
        subtotal=to_amount(vat_data_raw.get("subtotal")),
        total_vat_amount=total_vat,
        grand_total=to_amount(vat_data_raw.get("grandTotal")),
    )

    classification_raw = _dict(data.get("classification"))
    model_confidence = to_amount(classification_raw.get("confidence"))
    classification = Classification(
        category=_target_category(analysis, classification_raw.get("category"), category),
        confidence=min(max(model_confidence if model_confidence is not None else 0.5, 0.0), 1.0),
        reasoning=str(classification_raw.get("reasoning") or "Fallback classification"),
    )
    target = classification.category

    evidence_scan = scan_vat_amounts("\n".join([*extracted_text, raw_text]))
    # Unlabeled euro amounts on a VAT line are prices, not rate evidence.
    rate_lines = [line for line in evidence_scan.lines if line.kind != VatLineKind.UNLABELED]
    zero_document = bool(rate_lines) and all(line.zero_rated for line in rate_lines)
    flags = _as_text_list(data.get("validationFlags"))

    amounts: list[float] = []
    for item in items:
        if _is_zero_rated_item(item):
            amounts.append(0.0)
        elif item.vat_amount and item.vat_amount > 0 and not should_exclude_amount(item.vat_amount, evidence_text):
            amounts.append(item.vat_amount)

    if not amounts and total_vat is not None:
        if total_vat > 0 and not should_exclude_amount(total_vat, evidence_text):
            amounts.append(total_vat)
        elif total_vat == 0 and evidence_scan.zero_rated:
            amounts.append(0.0)

    if zero_document and any(amount != 0 for amount in amounts):
        logger.info("zero_rate_override", amounts=amounts)
        amounts = [0.0]
        flags.append("Zero-rated document: VAT amount set to 0.00")

    transaction_raw = _dict(data.get("transactionData"))
    transaction = TransactionData(
        date=_text(transaction_raw.get("date")),
        invoice_number=_text(transaction_raw.get("invoiceNumber")),
        currency=str(transaction_raw.get("currency") or "EUR"),
        total=to_amount(transaction_raw.get("total")),
    )

    result = ExtractionResult(
        sales_vat=amounts if target == VatCategory.SALES else [],
        purchase_vat=amounts if target != VatCategory.SALES else [],
        extracted_text=extracted_text,
        invoice_date=transaction.date or _text(data.get("invoiceDate")),
        total_amount=vat_data.grand_total if vat_data.grand_total is not None else to_amount(data.get("totalAmount")),
        invoice_total=to_amount(data.get("invoiceTotal")),
        transaction_data=transaction,
        document_type=DocumentType.coerce(data.get("documentType") or "OTHER"),
        vat_rate=items[0].vat_rate if items else None,
        vat_data=vat_data,
        business_details=_business_details(data.get("businessDetails")),
        classification=classification,
        validation_flags=flags,
    )

    verbatim = _verbatim_match(evidence_scan, amounts)
    result.confidence = _json_confidence(classification.confidence, amounts, items, total_vat, analysis, flags, verbatim)
    return result, verbatim


def _verbatim_match(scan: VatScan, amounts: list[float]) -> bool:
    for line in scan.lines:
        if line.kind == VatLineKind.LABELED and VERBATIM_LABEL.search(line.source):
            if any(abs(line.amount - amount) < 0.01 for amount in amounts):
                return True
    return False


def _json_confidence(
    base: float,
    amounts: list[float],
    items: list[LineItem],
    total_vat: float | None,
    analysis: DocumentAnalysis,
    flags: list[str],
    verbatim: bool,
) -> float:
    if not amounts:
        return 0.0
    confidence = max(base, 0.7)
    if len(amounts) > 1:
        confidence = min(confidence + 0.15, 0.95)
    if items and total_vat:
        line_total = sum(item.vat_amount or 0.0 for item in items)
        if abs(line_total - total_vat) <= LINE_ITEM_TOLERANCE:
            confidence = min(confidence + 0.1, 0.98)
    if analysis.confidence > 0.7:
        confidence = min(confidence + 0.15, 0.98)
    if flags:
        confidence = max(confidence - len(flags) * 0.05, 0.3)

    if verbatim:
        confidence = min(max(confidence, VERBATIM_FLOOR), 1.0)
    else:
        confidence = min(confidence, UNLABELED_CAP)
    return round(confidence, 2)


# ---------------------------------------------------------------------------
# Regex fallback regime
# ---------------------------------------------------------------------------


def _guess_document_type(lowered: str) -> DocumentType:
    if "credit note" in lowered:
        return DocumentType.CREDIT_NOTE
    if "invoice" in lowered:
        return DocumentType.INVOICE
    if "receipt" in lowered:
        return DocumentType.RECEIPT
    if "statement" in lowered:
        return DocumentType.STATEMENT
    return DocumentType.OTHER


def _fallback(
    text: str,
    category: str,
    *,
    base: ExtractionResult | None,
    reason: str,
    evidence: str | None,
) -> NormalizationOutcome:
    # Parsed JSON is scanned through its decoded extractedText; raw JSON may escape "€".
    if base is not None and base.extracted_text:
        parts = [evidence, *base.extracted_text]
    else:
        parts = [evidence, text]
    source = "\n".join(dict.fromkeys(part for part in parts if part))
    scan = scan_vat_amounts(source)
    scan.lines = [
        line for line in scan.lines
        if line.zero_rated or not should_exclude_amount(line.amount, source)
    ]
    best = scan.best_amount()
    result = base.model_copy(deep=True) if base is not None else ExtractionResult(extracted_text=[source] if source else [])

    if best is None:
        result.sales_vat = []
        result.purchase_vat = []
        result.confidence = 0.0
        return EmptyOutcome(result=result, reason=reason)

    amount, kind = best
    analysis = analyze_document_type(source)
    target = (
        analysis.suggested_category
        if analysis.suggested_category != VatCategory.UNKNOWN
        else VatCategory.from_document_category(category)
    )
    result.sales_vat = [amount] if target == VatCategory.SALES else []
    result.purchase_vat = [amount] if target != VatCategory.SALES else []
    result.confidence = FALLBACK_CONFIDENCE[kind]
    result.validation_flags = [*result.validation_flags, f"Regex fallback ({kind.value}): {reason}"]

    if base is None:
        lowered = source.lower()
        result.document_type = _guess_document_type(lowered)
        result.invoice_date = find_date_text(source)
        rates = scan.rates
        result.vat_rate = rates[0] if rates else None

    logger.info("normalizer_fallback", kind=kind.value, amount=amount, reason=reason)
    return FallbackOutcome(result=result, reason=reason)
