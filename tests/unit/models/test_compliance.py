"""Test compliance classification."""
import pytest
from payvat.models.classification import ComplianceReason, ComplianceStatus, classify
from tests.factories import make_extraction_result


class TestClassify:
    @pytest.mark.parametrize("confidence,status,reason", [
        (0.9, ComplianceStatus.COMPLIANT, ComplianceReason.HIGH_CONFIDENCE),
        (0.8, ComplianceStatus.COMPLIANT, ComplianceReason.HIGH_CONFIDENCE),
        (0.6, ComplianceStatus.WARNING, ComplianceReason.NEEDS_REVIEW),
        (0.5, ComplianceStatus.WARNING, ComplianceReason.NEEDS_REVIEW),
        (0.3, ComplianceStatus.WARNING, ComplianceReason.LOW_CONFIDENCE),
    ])
    def test_confidence_bands(self, confidence, status, reason):
        assessment = classify(make_extraction_result(confidence=confidence))
        assert assessment.status == status
        assert assessment.reason == reason

    def test_no_amounts_is_error(self):
        assessment = classify(make_extraction_result(purchase_vat=[], confidence=0.95))
        assert assessment.status == ComplianceStatus.ERROR
        assert assessment.message == "No VAT data extracted"

    def test_zero_rated_counts_as_amount(self):
        assessment = classify(make_extraction_result(purchase_vat=[0.0], confidence=0.9))
        assert assessment.status == ComplianceStatus.COMPLIANT

    def test_failed_extraction(self):
        assert classify(None).reason == ComplianceReason.EXTRACTION_FAILED
        assert classify(make_extraction_result(), extraction_failed=True).status == ComplianceStatus.ERROR

    def test_low_confidence_message_differs_from_review(self):
        low = classify(make_extraction_result(confidence=0.2))
        review = classify(make_extraction_result(confidence=0.6))
        assert low.status == review.status
        assert low.message != review.message
