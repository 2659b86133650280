"""Document-type heuristics used to route VAT amounts to sales or purchases."""
from __future__ import annotations

import re
from dataclasses import dataclass

from payvat.models.extraction import VatCategory

LEASE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r'lease',
        r'rental',
        r'monthly payment',
        r'vehicle finance',
        r'car finance',
        r'finance agreement',
        r'hire agreement',
    )
]

FINANCIAL_SERVICE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r'financial services',
        r'\bbank\b',
        r'finance limited',
        r'finance ltd',
        r'\bcredit\b',
        r'\blending\b',
    )
]

# Labels whose amount is a payment, not VAT.
EXCLUDED_AMOUNT_LABELS = (
    r'monthly\s+payment',
    r'lease\s+payment',
    r'rental',
    r'instalment',
    r'payment\s+due',
    r'amount\s+due',
)


@dataclass
class DocumentAnalysis:
    is_lease: bool = False
    is_financial_services: bool = False
    business_type: str = "UNKNOWN"
    suggested_category: VatCategory = VatCategory.UNKNOWN
    confidence: float = 0.5


def analyze_document_type(text: str) -> DocumentAnalysis:
    """Infer which VAT leg a document belongs to from its text."""
    analysis = DocumentAnalysis()
    if not text:
        return analysis

    lowered = text.lower()
    analysis.is_lease = any(p.search(lowered) for p in LEASE_PATTERNS)
    analysis.is_financial_services = any(p.search(lowered) for p in FINANCIAL_SERVICE_PATTERNS)

    if analysis.is_lease or analysis.is_financial_services:
        analysis.business_type = "FINANCIAL_SERVICES"
        analysis.suggested_category = VatCategory.PURCHASES
        analysis.confidence = 0.8

    if "invoice" in lowered and ("from" in lowered or "bill to" in lowered):
        analysis.suggested_category = VatCategory.PURCHASES
        analysis.confidence = max(analysis.confidence, 0.7)

    return analysis


def should_exclude_amount(amount: float, text: str) -> bool:
    """True when ``amount`` appears directly after a payment label in ``text``."""
    if not text:
        return False
    amount_str = re.escape(f"{amount:.2f}")
    lowered = text.lower()
    return any(
        re.search(rf'{label}[:\s]*€?{amount_str}', lowered)
        for label in EXCLUDED_AMOUNT_LABELS
    )
