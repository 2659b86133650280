"""LLM client abstract base class."""
from __future__ import annotations
from abc import ABC, abstractmethod
from pydantic import BaseModel


class LLMResponse(BaseModel):
    """Response from an LLM call."""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = ""
    latency_ms: int = 0


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def complete_text(
        self,
        system_prompt: str | None,
        user_prompt: str,
        *,
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Text-only completion."""
        ...

    @abstractmethod
    async def complete_vision(
        self,
        system_prompt: str | None,
        user_prompt: str,
        images: list[str],  # base64-encoded images
        *,
        image_mime_type: str = "image/png",
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Vision completion with images."""
        ...

    @abstractmethod
    async def ping(self) -> str:
        """Cheap connectivity probe. Returns a short status message."""
        ...
