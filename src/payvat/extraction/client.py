"""Extraction client: one multimodal model call per document.

The client never raises into the orchestrator. Provider errors, timeouts,
undecodable payloads and unreadable PDFs all come back as an
``ExtractionFailure`` so the caller decides whether to fall back.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import time
from typing import Any, Literal, Union

import structlog
from pydantic import BaseModel, Field

from ..llm.base import LLMClient, LLMResponse
from ..llm.errors import describe_provider_error
from ..prompts.builder import is_pdf, with_document_text
from ..telemetry import EventEmitter
from ..utils.pdf import EncryptedPDFError, render_pdf_to_images

logger = structlog.get_logger(__name__)


class RawModelOutput(BaseModel):
    kind: Literal["output"] = "output"
    content: str
    model: str
    mode: Literal["vision", "text"] = "vision"
    pages: int = 1
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


class ExtractionFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    message: str
    error_type: str
    retryable: bool = False
    diagnostic: dict[str, Any] = Field(default_factory=dict)


ExtractionOutcome = Union[RawModelOutput, ExtractionFailure]


def decode_file_data(file_data: str) -> bytes:
    """Strict base64 decode; raises ``ValueError`` on malformed input."""
    try:
        return base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"File data is not valid base64: {exc}") from exc


class ExtractionClient:
    """Wraps the vision/text model behind a prompt-in, raw-text-out contract."""

    def __init__(
        self,
        llm: LLMClient,
        emitter: EventEmitter,
        *,
        vision_model: str = "gpt-4o",
        text_model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        max_tokens: int = 2000,
        temperature: float = 0.1,
        max_pdf_pages: int = 5,
        pdf_render_dpi: int = 150,
    ):
        self._llm = llm
        self._emitter = emitter
        self._vision_model = vision_model
        self._text_model = text_model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_pdf_pages = max_pdf_pages
        self._pdf_render_dpi = pdf_render_dpi

    async def extract(self, file_data: str, mime_type: str, prompt: str, *, max_tokens: int | None = None) -> ExtractionOutcome:
        """Send the document and prompt to the vision model."""
        try:
            raw = decode_file_data(file_data)
        except ValueError as exc:
            return ExtractionFailure(message=str(exc), error_type="invalid_payload")

        if is_pdf(mime_type):
            try:
                pages = await asyncio.to_thread(
                    render_pdf_to_images, raw, self._pdf_render_dpi, self._max_pdf_pages,
                )
            except EncryptedPDFError as exc:
                return ExtractionFailure(message=f"PDF is encrypted: {exc}", error_type="pdf_encrypted")
            except Exception as exc:
                logger.warning("pdf_render_failed", error=str(exc))
                return ExtractionFailure(message=f"PDF could not be rendered: {exc}", error_type="pdf_render")
            if not pages:
                return ExtractionFailure(message="PDF has no pages", error_type="pdf_render")
            images = [base64.b64encode(page).decode("ascii") for page in pages]
            image_mime_type = "image/png"
        elif (mime_type or "").startswith("image/"):
            images = [file_data]
            image_mime_type = mime_type
        else:
            return ExtractionFailure(
                message=f"Unsupported file type for AI processing: {mime_type}",
                error_type="unsupported_mime",
            )

        call = self._llm.complete_vision(
            None,
            prompt,
            images,
            image_mime_type=image_mime_type,
            model=self._vision_model,
            temperature=self._temperature,
            max_tokens=max_tokens or self._max_tokens,
        )
        return await self._invoke(call, mode="vision", model=self._vision_model, pages=len(images))

    async def extract_text(self, text: str, prompt: str) -> ExtractionOutcome:
        """Text-only analysis of already extracted document text with the cheaper text model."""
        call = self._llm.complete_text(
            None,
            with_document_text(prompt, text),
            model=self._text_model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return await self._invoke(call, mode="text", model=self._text_model, pages=0)

    async def _invoke(self, call, *, mode: Literal["vision", "text"], model: str, pages: int) -> ExtractionOutcome:
        start = time.monotonic()
        try:
            response: LLMResponse = await asyncio.wait_for(call, timeout=self._timeout)
        except Exception as exc:
            described = describe_provider_error(exc)
            logger.warning(
                "extraction_call_failed",
                mode=mode,
                model=model,
                error_type=type(exc).__name__,
                error=described.message,
            )
            return ExtractionFailure(
                message=described.message,
                error_type=type(exc).__name__,
                retryable=described.retryable,
                diagnostic=described.diagnostic,
            )

        latency_ms = response.latency_ms or int((time.monotonic() - start) * 1000)
        self._emitter.emit(
            "llm_usage",
            feature="document_processing",
            model=response.model or model,
            mode=mode,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            latency_ms=latency_ms,
        )

        if not response.content.strip():
            return ExtractionFailure(message="No response from AI service", error_type="empty_response")

        return RawModelOutput(
            content=response.content,
            model=response.model or model,
            mode=mode,
            pages=pages,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            latency_ms=latency_ms,
        )
