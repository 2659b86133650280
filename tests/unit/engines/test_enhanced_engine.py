"""Test the AI vision engine."""
import base64
import json
import pytest
from unittest.mock import AsyncMock, patch
from payvat.engines.enhanced import IMAGE_BASED_PDF, EnhancedEngine
from payvat.errors import EngineUnavailableError
from payvat.extraction.client import ExtractionClient, ExtractionFailure, RawModelOutput
from tests.factories import make_document_input

MODEL_JSON = json.dumps({
    "documentType": "INVOICE",
    "vatData": {"lineItems": [{"description": "Consulting", "vatRate": 23, "vatAmount": 23.0}], "totalVatAmount": 23.0},
    "classification": {"category": "PURCHASES", "confidence": 0.9},
    "extractedText": ["Total Amount VAT: €23.00"],
})

PDF_DATA = base64.b64encode(b"%PDF-1.4 fake").decode()


@pytest.fixture
def client():
    return AsyncMock(spec=ExtractionClient)


@pytest.fixture
def engine(client):
    return EnhancedEngine(client, ai_enabled=True)


def image_input():
    return make_document_input(mime_type="image/png")


def pdf_input():
    document = make_document_input(mime_type="application/pdf")
    return document.model_copy(update={"file_data": PDF_DATA, "original_name": "invoice.pdf"})


class TestEnhancedEngine:
    @pytest.mark.asyncio
    async def test_disabled_raises(self, client):
        engine = EnhancedEngine(client, ai_enabled=False)
        with pytest.raises(EngineUnavailableError):
            await engine.process(image_input())
        client.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_client_raises(self):
        with pytest.raises(EngineUnavailableError):
            await EnhancedEngine(None, ai_enabled=True).process(image_input())

    @pytest.mark.asyncio
    async def test_unsupported_type_fails_logically(self, engine, client):
        result = await engine.process(make_document_input(mime_type="text/plain"))
        assert result.success is False
        assert result.error == "Unsupported file type for AI processing: text/plain"
        client.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_image_extraction(self, engine, client):
        client.extract.return_value = RawModelOutput(content=MODEL_JSON, model="gpt-4o")

        result = await engine.process(image_input())

        assert result.success is True
        assert result.engine == "enhanced"
        assert result.outcome == "parsed"
        assert result.extracted_data.purchase_vat == [23.0]
        assert result.scan_result.startswith("AI Enhanced: extracted 1 VAT amount(s): €23.00 (98% confidence)")
        assert result.processing_steps == ["validate_file_type", "vision_extraction", "normalize", "validate"]
        prompt = client.extract.call_args.args[2]
        assert "PURCHASES (VAT paid to suppliers)" in prompt

    @pytest.mark.asyncio
    async def test_image_provider_failure_raises(self, engine, client):
        client.extract.return_value = ExtractionFailure(message="rate limited", error_type="RateLimitError")
        with pytest.raises(EngineUnavailableError, match="rate limited"):
            await engine.process(image_input())

    @pytest.mark.asyncio
    async def test_encrypted_pdf_fails_logically(self, engine, client):
        client.extract.return_value = ExtractionFailure(message="PDF is encrypted: locked", error_type="pdf_encrypted")
        result = await engine.process(pdf_input())
        assert result.success is False
        assert "encrypted" in result.error

    @pytest.mark.asyncio
    async def test_pdf_text_fallback(self, engine, client):
        client.extract.return_value = ExtractionFailure(message="timeout", error_type="APITimeoutError")
        client.extract_text.return_value = RawModelOutput(content="Total VAT: €23.00", model="gpt-4o-mini", mode="text")

        with patch("payvat.engines.enhanced.extract_text_pdfplumber", return_value=["Invoice\nTotal VAT: €23.00"]):
            result = await engine.process(pdf_input())

        assert result.success is True
        assert result.extracted_data.purchase_vat == [23.0]
        assert "text_extraction" in result.processing_steps
        text, prompt = client.extract_text.call_args.args
        assert text == "Invoice\nTotal VAT: €23.00"
        assert "PURCHASES (VAT paid to suppliers)" in prompt

    @pytest.mark.asyncio
    async def test_image_based_pdf(self, engine, client):
        client.extract.return_value = ExtractionFailure(message="timeout", error_type="APITimeoutError")
        with patch("payvat.engines.enhanced.extract_text_pdfplumber", return_value=["", "  "]):
            result = await engine.process(pdf_input())
        assert result.success is False
        assert result.error == IMAGE_BASED_PDF

    @pytest.mark.asyncio
    async def test_pdf_text_call_failure_raises(self, engine, client):
        client.extract.return_value = ExtractionFailure(message="timeout", error_type="APITimeoutError")
        client.extract_text.return_value = ExtractionFailure(message="still down", error_type="APIConnectionError")
        with patch("payvat.engines.enhanced.extract_text_pdfplumber", return_value=["VAT €23.00"]):
            with pytest.raises(EngineUnavailableError):
                await engine.process(pdf_input())

    @pytest.mark.asyncio
    async def test_no_amounts_is_still_success(self, engine, client):
        client.extract.return_value = RawModelOutput(content="I cannot read this document.", model="gpt-4o")

        result = await engine.process(image_input())

        assert result.success is True
        assert result.outcome == "empty"
        assert result.scan_result.startswith("AI Enhanced: document scanned but no VAT amounts detected")
        assert "No VAT amounts detected in document" in result.warnings
