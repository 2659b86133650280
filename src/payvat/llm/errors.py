"""Translate OpenAI provider exceptions into plain-language messages."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import openai
from pydantic import BaseModel


class ProviderErrorDescription(BaseModel):
    message: str
    retryable: bool = False
    diagnostic: dict[str, Any] = {}


def _status(exc: BaseException) -> int | None:
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code
    return getattr(exc, "status_code", None)


def _code(exc: BaseException) -> str | None:
    return getattr(exc, "code", None)


def describe_provider_error(exc: BaseException) -> ProviderErrorDescription:
    """Map a provider exception onto a user-facing message and diagnostic dict."""
    message = str(exc)
    lowered = message.lower()
    status = _status(exc)
    code = _code(exc)
    diagnostic = {
        "errorType": type(exc).__name__,
        "errorCode": code,
        "errorStatus": status,
        "errorMessage": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    def described(text: str, retryable: bool = False) -> ProviderErrorDescription:
        return ProviderErrorDescription(message=text, retryable=retryable, diagnostic=diagnostic)

    if code == "rate_limit_exceeded":
        return described(
            "OpenAI API rate limit exceeded. Your API key may have reached its usage quota. "
            "Check your OpenAI dashboard for usage limits and billing status.",
            retryable=True,
        )
    if code == "invalid_api_key" or "incorrect api key" in lowered:
        return described(
            "Invalid OpenAI API key. Please check that PAYVAT_OPENAI_API_KEY is correctly set."
        )
    if code == "insufficient_quota" or "quota" in lowered:
        return described(
            "OpenAI API quota exceeded. Please check your OpenAI account billing and usage limits."
        )
    if code == "model_not_found" or "does not exist" in lowered:
        return described(
            "OpenAI model not accessible. Your API key may not have access to the vision model. "
            "Please check your OpenAI plan and model permissions."
        )
    if status == 401:
        return described(
            "OpenAI API authentication failed. Please verify your API key is correct "
            "and has the necessary permissions."
        )
    if status == 429:
        return described(
            "OpenAI API is rate limiting requests. Please wait a moment before trying again, "
            "or check your usage quota.",
            retryable=True,
        )
    if status in (500, 502, 503):
        return described(
            "OpenAI API is temporarily unavailable due to server issues. Please try again in a few minutes.",
            retryable=True,
        )
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, TimeoutError)) \
            or "timeout" in lowered or "network" in lowered:
        return described(
            "Network timeout while connecting to OpenAI API. Please check your internet connection and try again.",
            retryable=True,
        )
    return described(
        f"OpenAI API error: {message or 'Unknown error'}. "
        "Please try again or contact support if the issue persists."
    )
