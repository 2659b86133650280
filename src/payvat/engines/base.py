"""Extraction engine contract.

An engine turns one stored document into an ``EngineResult``. Two kinds of
failure are distinguished:

* the engine cannot run at all (AI disabled, provider down): it raises
  ``EngineUnavailableError`` and the orchestrator moves on to the next engine;
* the engine ran but the document cannot yield VAT data (encrypted PDF,
  unsupported type): it returns ``success=False`` with an ``error`` message,
  which surfaces to the user as a 422.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from ..models.documents import DocumentRecord
from ..models.extraction import ExtractionResult


class DocumentInput(BaseModel):
    file_data: str
    mime_type: str
    original_name: str
    category: str

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentInput":
        return cls(
            file_data=record.file_data or "",
            mime_type=record.mime_type,
            original_name=record.original_name,
            category=record.category,
        )


class EngineResult(BaseModel):
    engine: str
    success: bool
    is_scanned: bool = False
    scan_result: str = ""
    extracted_data: ExtractionResult | None = None
    error: str | None = None
    outcome: str | None = None
    processing_steps: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_amounts(self) -> bool:
        return self.extracted_data is not None and self.extracted_data.has_amounts


class ExtractionEngine(ABC):
    """One way of extracting VAT data from a document."""

    name: str = "engine"

    @abstractmethod
    async def process(self, document: DocumentInput) -> EngineResult:
        ...

    def failed(self, error: str, steps: list[str] | None = None) -> EngineResult:
        return EngineResult(
            engine=self.name,
            success=False,
            scan_result=error,
            error=error,
            processing_steps=steps or [],
        )


def format_amounts(amounts: list[float]) -> str:
    return ", ".join(f"€{amount:.2f}" for amount in amounts)
