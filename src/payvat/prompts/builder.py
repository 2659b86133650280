"""Builds the instruction text sent to the vision model."""
from __future__ import annotations

from enum import StrEnum

from payvat.models.extraction import VatCategory
from payvat.prompts.registry import PromptRegistry

PDF_MIME_TYPE = "application/pdf"
PDF_NOTE = "Note: This is a PDF document. Please extract all visible text and VAT information from all pages."

_default_registry = PromptRegistry()


class PromptMode(StrEnum):
    STANDARD = "standard"
    SIMPLE = "simple"


_TEMPLATES = {
    PromptMode.STANDARD: "vat_extraction",
    PromptMode.SIMPLE: "simple_total_vat",
}

_CATEGORY_HINTS = {
    VatCategory.SALES: "SALES (VAT charged to customers)",
    VatCategory.PURCHASES: "PURCHASES (VAT paid to suppliers)",
}


def is_pdf(mime_type: str | None) -> bool:
    return (mime_type or "").lower() == PDF_MIME_TYPE


def build_prompt(
    mime_type: str,
    category: str,
    mode: PromptMode | str = PromptMode.STANDARD,
    registry: PromptRegistry | None = None,
) -> str:
    """Render the extraction prompt for a document.

    PDFs get an extra instruction to read every page.
    """
    registry = registry or _default_registry
    template = _TEMPLATES[PromptMode(mode)]
    hint = _CATEGORY_HINTS[VatCategory.from_document_category(category)]
    prompt = registry.render(template, {"category_hint": hint})
    if is_pdf(mime_type):
        prompt = f"{prompt}\n\n{PDF_NOTE}"
    return prompt


def with_document_text(prompt: str, text: str) -> str:
    """Append extracted document text for text-only analysis."""
    return f"{prompt}\n\nDocument Text:\n{text}"
