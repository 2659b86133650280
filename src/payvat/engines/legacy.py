"""Text-based regex engine used when AI extraction is unavailable.

Only documents with a text layer can be read: PDFs through pdfplumber, CSV
and plain text decoded as UTF-8. Images need the vision model.
"""
from __future__ import annotations

import asyncio
import re
import time

import structlog

from ..extraction.client import decode_file_data
from ..models.extraction import DocumentType, ExtractionResult, VatCategory
from ..prompts.builder import is_pdf
from ..utils.pdf import extract_text_pdfplumber
from ..vat.date_parsing import find_date_text
from ..vat.number_parsing import parse_amount
from ..vat.patterns import ZERO_RATE
from ..vat.rates import validate_extracted_vat
from .base import DocumentInput, EngineResult, ExtractionEngine, format_amounts

logger = structlog.get_logger(__name__)

MAX_CONFIDENCE = 0.7

_NUM = r'([0-9][0-9,]*(?:\.[0-9]+)?)'

VAT_PATTERNS = [
    re.compile(r'(?:total\s+)?vat[:\s]*€?' + _NUM),
    re.compile(r'vat\s*amount[:\s]*€?' + _NUM),
    re.compile(r'(?:total\s+)?tax[:\s]*€?' + _NUM),
    re.compile(r'vat\s*@?\s*23%[:\s]*€?' + _NUM),
    re.compile(r'vat\s*@?\s*13\.5%[:\s]*€?' + _NUM),
    re.compile(r'vat\s*@?\s*9%[:\s]*€?' + _NUM),
    re.compile(r'€' + _NUM + r'\s*vat'),
    re.compile(r'€' + _NUM + r'\s*tax'),
    re.compile(r'vat\s*\([0-9.]+%\)[:\s]*€?' + _NUM),
    re.compile(r'cáin\s*bhreisluacha[:\s]*€?' + _NUM),
]

TOTAL_PATTERNS = [
    re.compile(r'total[:\s]*€?' + _NUM),
    re.compile(r'amount\s*due[:\s]*€?' + _NUM),
    re.compile(r'grand\s*total[:\s]*€?' + _NUM),
]

RATE_PATTERN = re.compile(r'vat\s*@?\s*\(?([0-9]+(?:\.[0-9]+)?)\s*%')


class TextExtractionError(Exception):
    pass


def extract_document_text(file_data: str, mime_type: str) -> str:
    """Return the document's text layer or raise ``TextExtractionError``."""
    mime_type = (mime_type or "").lower()
    if is_pdf(mime_type):
        try:
            pages = extract_text_pdfplumber(decode_file_data(file_data))
        except Exception as exc:
            raise TextExtractionError(f"Failed to extract text from PDF: {exc}") from exc
        text = "\n".join(page for page in pages if page).strip()
        if not text:
            raise TextExtractionError("No text content found in PDF - may be image-based PDF")
        return text
    if mime_type.startswith("image/"):
        raise TextExtractionError("Image OCR requires AI processing for accurate text extraction")
    if "csv" in mime_type or "spreadsheet" in mime_type or mime_type.startswith("text/"):
        try:
            return decode_file_data(file_data).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise TextExtractionError(f"Failed to decode text document: {exc}") from exc
    raise TextExtractionError("Unsupported file type for text extraction")


def _amount(raw: str) -> float | None:
    try:
        return parse_amount(raw)
    except ValueError:
        return None


def _is_rate(line: str, match: re.Match) -> bool:
    return line[match.end():].lstrip().startswith("%")


def extract_vat_from_text(text: str, category: str) -> ExtractionResult:
    """Regex VAT extraction over a document's text layer."""
    amounts: list[float] = []
    confidence = 0.0

    for line in text.lower().splitlines():
        line = re.sub(r'\s+', ' ', line).strip()
        if not line:
            continue
        # A zero-rate marker makes every VAT figure on the line 0.00.
        line_zero = bool(ZERO_RATE.search(line))
        matched = False
        for pattern in VAT_PATTERNS:
            for match in pattern.finditer(line):
                if _is_rate(line, match):
                    continue
                value = _amount(match.group(1))
                if value is None:
                    continue
                if line_zero:
                    value = 0.0
                elif value <= 0:
                    continue
                matched = True
                if value not in amounts:
                    amounts.append(value)
                    confidence += 0.3
        if line_zero and not matched and "vat" in line and 0.0 not in amounts:
            amounts.append(0.0)
            confidence += 0.3

    normalized = re.sub(r'\s+', ' ', text.lower())
    total: float | None = None
    for pattern in TOTAL_PATTERNS:
        for match in pattern.finditer(normalized):
            value = _amount(match.group(1))
            if value and value > 0:
                total = value
                confidence += 0.2

    vat_rate: float | None = None
    rate_match = RATE_PATTERN.search(normalized)
    if rate_match:
        vat_rate = float(rate_match.group(1))
        confidence += 0.1

    if not amounts and total and vat_rate:
        amounts.append(round(total * vat_rate / (100 + vat_rate), 2))
        confidence += 0.2

    target = VatCategory.from_document_category(category)
    return ExtractionResult(
        sales_vat=amounts if target == VatCategory.SALES else [],
        purchase_vat=amounts if target != VatCategory.SALES else [],
        confidence=round(min(confidence, MAX_CONFIDENCE), 2),
        extracted_text=[text],
        invoice_date=find_date_text(text),
        total_amount=total,
        document_type=DocumentType.INVOICE if "invoice" in normalized else DocumentType.RECEIPT,
        vat_rate=vat_rate,
    )


class LegacyEngine(ExtractionEngine):
    name = "legacy"

    async def process(self, document: DocumentInput) -> EngineResult:
        start = time.monotonic()
        steps = ["text_extraction"]
        try:
            text = await asyncio.to_thread(extract_document_text, document.file_data, document.mime_type)
        except TextExtractionError as exc:
            logger.info("legacy_text_unavailable", file_name=document.original_name, error=str(exc))
            return self.failed(str(exc), steps)

        steps.append("regex_extraction")
        result = extract_vat_from_text(text, document.category)
        validation = validate_extracted_vat(result)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        amounts = result.all_amounts
        if amounts:
            summary = (
                f"Legacy: Extracted {len(amounts)} VAT amount(s): {format_amounts(amounts)} "
                f"({round(result.confidence * 100)}% confidence, {elapsed_ms}ms)"
            )
        else:
            summary = f"Legacy: Document scanned but no VAT amounts detected ({elapsed_ms}ms)"
        if validation.note_count:
            summary += f" ({validation.note_count} validation notes)"

        logger.info("legacy_extraction_complete", file_name=document.original_name, amounts=amounts,
                    confidence=result.confidence)
        return EngineResult(
            engine=self.name,
            success=True,
            is_scanned=True,
            scan_result=summary,
            extracted_data=result,
            outcome="fallback" if amounts else "empty",
            processing_steps=steps,
            warnings=[*validation.issues, *validation.warnings],
        )
