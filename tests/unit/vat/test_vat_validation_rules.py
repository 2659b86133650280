"""Test sanity checks on extracted VAT data."""
from payvat.models.extraction import ExtractionResult
from payvat.vat.rates import validate_extracted_vat


class TestValidateExtractedVat:
    def test_clean_result(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[23.0], confidence=0.9, vat_rate=23.0))
        assert validation.is_valid
        assert validation.note_count == 0

    def test_missing_result(self):
        validation = validate_extracted_vat(None)
        assert not validation.is_valid
        assert validation.issues == ["No extracted data available"]

    def test_negative_amount_is_an_issue(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[-5.0], confidence=0.9))
        assert not validation.is_valid
        assert "negative" in validation.issues[0]

    def test_very_high_amount_warns(self):
        validation = validate_extracted_vat(ExtractionResult(sales_vat=[150_000.0], confidence=0.9))
        assert validation.is_valid
        assert any("Very high VAT amount" in w for w in validation.warnings)

    def test_low_confidence_warns(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[10.0], confidence=0.2))
        assert any("Low confidence score: 20%" in w for w in validation.warnings)

    def test_unusual_rate_warns(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[10.0], confidence=0.9, vat_rate=21.0))
        assert any("Unusual VAT rate detected: 21%" in w for w in validation.warnings)

    def test_reduced_rate_is_usual(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[10.0], confidence=0.9, vat_rate=13.5))
        assert validation.warnings == []

    def test_vat_exceeding_total_warns(self):
        validation = validate_extracted_vat(ExtractionResult(purchase_vat=[23.0], confidence=0.9, total_amount=10.0))
        assert any("exceeds total" in w for w in validation.warnings)

    def test_no_amounts_warns(self):
        validation = validate_extracted_vat(ExtractionResult(confidence=0.9))
        assert validation.warnings == ["No VAT amounts detected in document"]
