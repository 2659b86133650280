"""Invoice total resolution.

The total is taken from the first source that yields one:

1. an explicit field on the extraction (``totalAmount``, ``transactionData.total``,
   ``invoiceTotal``)
2. an estimate from the VAT sum at the standard rate
3. the largest "Total"-like amount in the raw scan text

The estimate in step 2 is only correct when the whole invoice is taxed at the
standard rate, so it is returned with ``vat_estimate`` provenance and callers
surface it as an approximation.
"""
from __future__ import annotations

import re

from payvat.models.extraction import ExtractionResult, TotalProvenance, TotalResolution
from payvat.utils.resilience import first_result

TOTAL_PATTERN = re.compile(r'(?:Total|Amount|Invoice Total|Final Amount)[\s:]*€?([0-9,]+\.?[0-9]*)', re.IGNORECASE)


def _explicit(result: ExtractionResult) -> float | None:
    candidates = [
        result.total_amount,
        result.transaction_data.total if result.transaction_data else None,
        result.invoice_total,
    ]
    for value in candidates:
        if value:
            return value
    return None


def _vat_estimate(result: ExtractionResult, standard_vat_rate: float) -> float | None:
    vat_sum = sum(result.all_amounts)
    if vat_sum > 0:
        return round(vat_sum / standard_vat_rate, 2)
    return None


def scan_text_for_total(text: str | None) -> float | None:
    """Largest positive amount following a Total/Amount label, or None."""
    if not text:
        return None
    amounts = []
    for raw in TOTAL_PATTERN.findall(text):
        try:
            value = float(raw.replace(",", ""))
        except ValueError:
            continue
        if value > 0:
            amounts.append(value)
    return max(amounts) if amounts else None


def resolve_total(
    result: ExtractionResult | None,
    raw_scan_text: str | None,
    standard_vat_rate: float = 0.23,
) -> TotalResolution:
    strategies = []
    if result is not None:
        strategies.append((TotalProvenance.EXPLICIT, lambda: _explicit(result)))
        strategies.append((TotalProvenance.VAT_ESTIMATE, lambda: _vat_estimate(result, standard_vat_rate)))
    strategies.append((TotalProvenance.TEXT_SCAN, lambda: scan_text_for_total(raw_scan_text)))

    hit = first_result(strategies)
    if hit is None:
        return TotalResolution()
    provenance, amount = hit
    return TotalResolution(amount=amount, provenance=provenance)
