"""Side-by-side run of the simple and full extraction prompts (debug mode only)."""
from __future__ import annotations

from typing import Any

import structlog

from ..prompts.builder import PromptMode, build_prompt
from .client import ExtractionClient, ExtractionFailure

logger = structlog.get_logger(__name__)

PREVIEW_CHARS = 500
SIMPLE_MAX_TOKENS = 100


async def run_prompt_diagnostic(
    client: ExtractionClient,
    file_data: str,
    mime_type: str,
    category: str,
) -> dict[str, Any]:
    """Compare what the simple "Total Amount VAT" prompt and the full prompt return.

    Never raises; a failed run is reported as ``{"failed": True, "error": ...}``.
    """
    try:
        simple_prompt = build_prompt(mime_type, category, PromptMode.SIMPLE)
        simple = await client.extract(file_data, mime_type, simple_prompt, max_tokens=SIMPLE_MAX_TOKENS)
        if isinstance(simple, ExtractionFailure):
            return {"failed": True, "error": simple.message}

        full = await client.extract(file_data, mime_type, build_prompt(mime_type, category))
        if isinstance(full, ExtractionFailure):
            return {"failed": True, "error": full.message}
    except Exception as exc:  # noqa: BLE001
        logger.warning("prompt_diagnostic_failed", error=str(exc))
        return {"failed": True, "error": str(exc) or type(exc).__name__}

    return {
        "simplePrompt": simple_prompt,
        "simpleResult": simple.content,
        "complexResultLength": len(full.content),
        "complexResultPreview": full.content[:PREVIEW_CHARS],
        "tokensUsed": {
            "simple": simple.input_tokens + simple.output_tokens,
            "complex": full.input_tokens + full.output_tokens,
        },
    }
