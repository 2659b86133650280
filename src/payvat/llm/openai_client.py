"""OpenAI LLM client for vision and text completions."""
from __future__ import annotations

import asyncio
import time

import openai
import structlog

from .base import LLMClient, LLMResponse

logger = structlog.get_logger(__name__)

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAYS = [1.0, 2.0, 4.0]

# Exceptions that are retryable. Authentication and bad-request errors are not.
RETRYABLE_EXCEPTIONS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class OpenAIClient(LLMClient):
    """LLM client for GPT models on the OpenAI API.

    ``model`` is the default (vision-capable) model; callers may override it
    per call, e.g. to send text-only fallbacks to a cheaper model.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "",
        timeout: int = 60,
        max_retries: int = MAX_RETRIES,
    ):
        if not api_key:
            raise ValueError("api_key is required for the OpenAI client")
        self._model = model
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=float(timeout),
            max_retries=0,
        )

    async def complete_text(
        self,
        system_prompt: str | None,
        user_prompt: str,
        *,
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Text-only completion using the Chat Completions API."""
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        return await self._call_with_retry(
            model=model or self._model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def complete_vision(
        self,
        system_prompt: str | None,
        user_prompt: str,
        images: list[str],
        *,
        image_mime_type: str = "image/png",
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Vision completion with base64-encoded images."""
        user_content: list[dict] = [{"type": "text", "text": user_prompt}]
        for base64_str in images:
            user_content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{image_mime_type};base64,{base64_str}",
                    "detail": "high",
                },
            })

        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_content})

        return await self._call_with_retry(
            model=model or self._model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def ping(self) -> str:
        """List models as a cheap authenticated round trip."""
        page = await self._client.models.list()
        count = len(page.data)
        return f"OpenAI API reachable ({count} models available)"

    async def _call_with_retry(
        self,
        model: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        """Call the OpenAI API with exponential backoff retries."""
        last_exception: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                start = time.monotonic()
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                elapsed_ms = int((time.monotonic() - start) * 1000)

                choice = response.choices[0]
                content_text = choice.message.content or ""

                input_tokens = 0
                output_tokens = 0
                if response.usage is not None:
                    input_tokens = response.usage.prompt_tokens
                    output_tokens = response.usage.completion_tokens

                return LLMResponse(
                    content=content_text,
                    model=response.model or model,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    finish_reason=choice.finish_reason or "",
                    latency_ms=elapsed_ms,
                )

            except RETRYABLE_EXCEPTIONS as exc:
                last_exception = exc
                if attempt < self._max_retries:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.warning(
                        "openai_api_retry",
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(exc),
                        model=model,
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "openai_api_exhausted_retries",
                        attempts=self._max_retries + 1,
                        error=str(exc),
                        model=model,
                    )

        raise last_exception  # type: ignore[misc]
