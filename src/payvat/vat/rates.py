"""Irish VAT rate table and sanity checks on extracted VAT data."""
from __future__ import annotations

from dataclasses import dataclass, field

from payvat.models.extraction import ExtractionResult

STANDARD_RATE = 23.0
REDUCED_RATE = 13.5
SECOND_REDUCED_RATE = 9.0
ZERO_RATE = 0.0

IRISH_VAT_RATES: frozenset[float] = frozenset({ZERO_RATE, SECOND_REDUCED_RATE, REDUCED_RATE, STANDARD_RATE})

HIGH_VAT_THRESHOLD = 100_000.0
LOW_CONFIDENCE_THRESHOLD = 0.3


@dataclass
class VatValidation:
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def note_count(self) -> int:
        return len(self.issues) + len(self.warnings)


def validate_extracted_vat(result: ExtractionResult | None) -> VatValidation:
    """Flag implausible values in an extraction.

    Negative VAT is an issue; everything else is a warning for manual review.
    """
    validation = VatValidation()
    if result is None:
        validation.issues.append("No extracted data available")
        return validation

    amounts = result.all_amounts
    if not amounts:
        validation.warnings.append("No VAT amounts detected in document")

    for amount in amounts:
        if amount < 0:
            validation.issues.append(f"Invalid negative VAT amount: €{amount:.2f}")
        if amount > HIGH_VAT_THRESHOLD:
            validation.warnings.append(f"Very high VAT amount detected: €{amount:.2f} - please verify")

    if result.confidence < LOW_CONFIDENCE_THRESHOLD:
        validation.warnings.append(
            f"Low confidence score: {round(result.confidence * 100)}% - manual review recommended"
        )

    if result.vat_rate and result.vat_rate not in IRISH_VAT_RATES:
        validation.warnings.append(
            f"Unusual VAT rate detected: {result.vat_rate:g}% - verify this is correct for Ireland"
        )

    if result.total_amount and amounts and result.total_amount - sum(amounts) < 0:
        validation.warnings.append("VAT amount exceeds total amount - please verify calculations")

    return validation
