"""AI provider status checks reported alongside every processing response."""
from __future__ import annotations

from typing import Awaitable, Callable

import structlog
from pydantic import Field

from ..config import Settings
from ..models.extraction import CamelModel

logger = structlog.get_logger(__name__)

ConnectivityProbe = Callable[[], Awaitable[str]]


class ConnectivityResult(CamelModel):
    success: bool
    message: str
    error: str | None = None


class AIStatus(CamelModel):
    api_key_configured: bool = False
    api_key_format: str = "invalid-format"
    api_enabled: bool = False
    connectivity_test: ConnectivityResult | None = None
    diagnostic_message: str | None = None
    suggestions: list[str] = Field(default_factory=list)

    @property
    def connected(self) -> bool:
        return bool(self.connectivity_test and self.connectivity_test.success)


async def check_ai_status(settings: Settings, probe: ConnectivityProbe | None = None) -> AIStatus:
    """Report whether AI extraction can run.

    The probe only runs when the key is configured and ``connectivity_check``
    is enabled. A failing probe is recorded, never raised.
    """
    status = AIStatus(
        api_key_configured=settings.api_key_configured,
        api_key_format=settings.api_key_format,
        api_enabled=settings.api_key_configured,
    )

    if not status.api_enabled:
        status.diagnostic_message = "OpenAI API key not configured - AI processing disabled"
        status.suggestions = [
            "Set PAYVAT_OPENAI_API_KEY in the environment",
            "Restart the service after updating the configuration",
        ]
        logger.warning("ai_processing_disabled", reason=status.diagnostic_message)
        return status

    status.diagnostic_message = "AI processing enabled"
    if status.api_key_format != "valid-format":
        status.suggestions.append("OpenAI API keys normally start with 'sk-'")

    if settings.connectivity_check and probe is not None:
        try:
            message = await probe()
            status.connectivity_test = ConnectivityResult(success=True, message=message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("ai_connectivity_failed", error=str(exc))
            status.connectivity_test = ConnectivityResult(
                success=False,
                message="OpenAI API connectivity failed",
                error=str(exc) or type(exc).__name__,
            )
            status.suggestions.append("Documents will fall back to legacy processing")

    return status
