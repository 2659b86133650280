"""Entity contracts exchanged with the persistence adapter."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AuthUser(BaseModel):
    """Identity supplied by the upstream authentication layer."""
    id: str
    email: str | None = None


class DocumentRecord(BaseModel):
    """The subset of a stored document that processing reads."""

    id: str
    user_id: str | None = None
    file_data: str | None = None
    mime_type: str
    original_name: str
    category: str
    is_scanned: bool = False
    scan_result: str | None = None
    invoice_total: float | None = None
    extraction_confidence: float | None = None
    date_extraction_confidence: float | None = None
    extracted_date: datetime | None = None
    extracted_year: int | None = None
    extracted_month: int | None = None

    @property
    def is_cached(self) -> bool:
        return self.is_scanned and bool(self.scan_result)


class DocumentPatch(BaseModel):
    """A partial document update; only fields that were set are written."""

    is_scanned: bool | None = None
    scan_result: str | None = None
    invoice_total: float | None = None
    extraction_confidence: float | None = None
    date_extraction_confidence: float | None = None
    extracted_date: datetime | None = None
    extracted_year: int | None = None
    extracted_month: int | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    @property
    def links_folder(self) -> bool:
        fields = self.model_fields_set
        return "extracted_year" in fields or "extracted_month" in fields

    def without_folder_link(self) -> "DocumentPatch":
        """Copy of this patch that keeps the date but drops year/month."""
        data = self.model_dump(exclude_unset=True, exclude={"extracted_year", "extracted_month"})
        return DocumentPatch(**data)


class AuditEntry(BaseModel):
    user_id: str
    action: str = "VAT_DATA_EXTRACTED"
    entity_type: str = "DOCUMENT"
    entity_id: str
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProcessRequest(BaseModel):
    """Body of a document-processing request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    document_id: str = Field(min_length=1)
    force_reprocess: bool = False
    debug_mode: bool = False


class RequestContext(BaseModel):
    """Client details recorded in the audit trail."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
