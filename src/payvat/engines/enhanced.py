"""AI vision engine: prompt → model → normalizer → validation."""
from __future__ import annotations

import asyncio

import structlog

from ..errors import EngineUnavailableError
from ..extraction.client import ExtractionClient, ExtractionFailure, decode_file_data
from ..extraction.normalizer import normalize
from ..prompts.builder import build_prompt, is_pdf
from ..prompts.registry import PromptRegistry
from ..utils.pdf import extract_text_pdfplumber
from ..vat.rates import validate_extracted_vat
from .base import DocumentInput, EngineResult, ExtractionEngine, format_amounts

logger = structlog.get_logger(__name__)

IMAGE_BASED_PDF = "PDF appears to be image-based - no extractable text found"


def _pdf_text(file_data: str) -> str:
    pages = extract_text_pdfplumber(decode_file_data(file_data))
    return "\n".join(page for page in pages if page).strip()


class EnhancedEngine(ExtractionEngine):
    name = "enhanced"

    def __init__(
        self,
        client: ExtractionClient | None,
        *,
        ai_enabled: bool,
        registry: PromptRegistry | None = None,
    ):
        self._client = client
        self._ai_enabled = ai_enabled
        self._registry = registry

    async def process(self, document: DocumentInput) -> EngineResult:
        if not self._ai_enabled or self._client is None:
            raise EngineUnavailableError("AI processing is disabled")

        mime_type = (document.mime_type or "").lower()
        steps = ["validate_file_type"]
        if not (is_pdf(mime_type) or mime_type.startswith("image/")):
            return self.failed(f"Unsupported file type for AI processing: {document.mime_type}", steps)

        prompt = build_prompt(mime_type, document.category, registry=self._registry)
        steps.append("vision_extraction")
        output = await self._client.extract(document.file_data, mime_type, prompt)
        evidence: str | None = None

        if isinstance(output, ExtractionFailure):
            if output.error_type in ("pdf_encrypted", "invalid_payload"):
                return self.failed(output.message, steps)
            if not is_pdf(mime_type):
                raise EngineUnavailableError(f"AI processing failed: {output.message}")

            logger.info("vision_failed_trying_text", file_name=document.original_name, error=output.message)
            steps.append("pdf_text_extraction")
            try:
                evidence = await asyncio.to_thread(_pdf_text, document.file_data)
            except Exception as exc:
                logger.warning("pdf_text_extraction_failed", file_name=document.original_name, error=str(exc))
                return self.failed(f"PDF text could not be read: {exc}", steps)
            if not evidence:
                return self.failed(IMAGE_BASED_PDF, steps)

            steps.append("text_extraction")
            output = await self._client.extract_text(evidence, prompt)
            if isinstance(output, ExtractionFailure):
                raise EngineUnavailableError(f"AI processing failed: {output.message}")

        steps.append("normalize")
        outcome = normalize(output, document.category, evidence=evidence)
        result = outcome.result

        steps.append("validate")
        validation = validate_extracted_vat(result)
        amounts = result.all_amounts
        if amounts:
            summary = (
                f"AI Enhanced: extracted {len(amounts)} VAT amount(s): {format_amounts(amounts)} "
                f"({round(result.confidence * 100)}% confidence)"
            )
        else:
            summary = "AI Enhanced: document scanned but no VAT amounts detected"
        if validation.note_count:
            summary += f" ({validation.note_count} validation notes)"

        logger.info(
            "enhanced_extraction_complete",
            file_name=document.original_name,
            outcome=outcome.kind,
            amounts=amounts,
            confidence=result.confidence,
            validation="PASS" if validation.is_valid else "WARNINGS",
        )
        return EngineResult(
            engine=self.name,
            success=True,
            is_scanned=True,
            scan_result=summary,
            extracted_data=result,
            outcome=outcome.kind,
            processing_steps=steps,
            warnings=[*validation.issues, *validation.warnings],
        )
