"""Compliance classification of an extraction result.

Status collapses to three values, but the reason behind a WARNING is kept so
the emitted message can still distinguish "needs review" from "low
confidence".
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from payvat.models.extraction import ExtractionResult

COMPLIANT_THRESHOLD = 0.8
REVIEW_THRESHOLD = 0.5


class ComplianceStatus(StrEnum):
    COMPLIANT = "COMPLIANT"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ComplianceReason(StrEnum):
    HIGH_CONFIDENCE = "HIGH_CONFIDENCE"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    NO_AMOUNTS = "NO_AMOUNTS"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"


_MESSAGES: dict[ComplianceReason, str] = {
    ComplianceReason.HIGH_CONFIDENCE: "VAT data extracted with good confidence",
    ComplianceReason.NEEDS_REVIEW: "Medium confidence: manual review recommended",
    ComplianceReason.LOW_CONFIDENCE: "Low confidence: extraction may be inaccurate",
    ComplianceReason.NO_AMOUNTS: "No VAT data extracted",
    ComplianceReason.EXTRACTION_FAILED: "Document processing failed",
}


class ComplianceAssessment(BaseModel):
    status: ComplianceStatus
    reason: ComplianceReason
    message: str


def classify(result: ExtractionResult | None, extraction_failed: bool = False) -> ComplianceAssessment:
    """Decide COMPLIANT / WARNING / ERROR from confidence and amount presence.

    A zero amount (``[0.0]``) counts as present: a zero-rated invoice is a
    valid extraction.
    """
    if extraction_failed or result is None:
        reason = ComplianceReason.EXTRACTION_FAILED
        status = ComplianceStatus.ERROR
    elif not result.has_amounts:
        reason = ComplianceReason.NO_AMOUNTS
        status = ComplianceStatus.ERROR
    elif result.confidence >= COMPLIANT_THRESHOLD:
        reason = ComplianceReason.HIGH_CONFIDENCE
        status = ComplianceStatus.COMPLIANT
    elif result.confidence >= REVIEW_THRESHOLD:
        reason = ComplianceReason.NEEDS_REVIEW
        status = ComplianceStatus.WARNING
    else:
        reason = ComplianceReason.LOW_CONFIDENCE
        status = ComplianceStatus.WARNING
    return ComplianceAssessment(status=status, reason=reason, message=_MESSAGES[reason])
