"""Structured telemetry events emitted by the processing pipeline.

The orchestrator and extraction client never print diagnostics directly;
they emit named events through an injected :class:`EventEmitter`. Production
wiring forwards events to structlog, tests use :class:`RecordingEmitter` and
assert on the recorded events.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TelemetryEvent:
    """A single emitted event."""
    name: str
    fields: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventEmitter(ABC):
    """Sink for pipeline events. Emission is fire-and-forget."""

    def emit(self, name: str, /, **fields: Any) -> None:
        try:
            self._emit(TelemetryEvent(name=name, fields=fields))
        except Exception as exc:  # noqa: BLE001 - telemetry must never break the caller
            logger.warning("telemetry_emit_failed", event_name=name, error=str(exc))

    @abstractmethod
    def _emit(self, event: TelemetryEvent) -> None:
        ...


class StructlogEmitter(EventEmitter):
    """Forwards events to the structured log stream."""

    def __init__(self, logger_name: str = "payvat.telemetry"):
        self._logger = structlog.get_logger(logger_name)

    def _emit(self, event: TelemetryEvent) -> None:
        self._logger.info(event.name, **event.fields)


class RecordingEmitter(EventEmitter):
    """Keeps events in memory."""

    def __init__(self):
        self.events: list[TelemetryEvent] = []

    def _emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.name == name]

    def names(self) -> list[str]:
        return [e.name for e in self.events]
