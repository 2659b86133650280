"""Persistence adapter consumed by the document processor.

The processor only sees the ``DocumentStore`` protocol. Each operation runs
in its own session and commits on its own, so a failed folder upsert or
audit append never rolls back the document update.
"""
from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import ForeignKeyConstraintError
from ..models.documents import AuditEntry, DocumentPatch, DocumentRecord
from .models import AuditLog
from .repositories import AuditLogRepo, DocumentRepo, FolderRepo

logger = structlog.get_logger(__name__)


class DocumentStore(Protocol):
    async def find_document(self, document_id: str, owner_id: str | None) -> DocumentRecord | None: ...

    async def update_document(self, document_id: str, patch: DocumentPatch) -> DocumentRecord | None: ...

    async def upsert_folder(self, user_id: str, year: int, month: int) -> str: ...

    async def append_audit_log(self, entry: AuditEntry) -> None: ...


class SqlAlchemyDocumentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_document(self, document_id: str, owner_id: str | None) -> DocumentRecord | None:
        async with self._session_factory() as session:
            row = await DocumentRepo(session).get_by_id(document_id, owner_id)
            return DocumentRecord.model_validate(row, from_attributes=True) if row else None

    async def update_document(self, document_id: str, patch: DocumentPatch) -> DocumentRecord | None:
        """Apply ``patch``; a referential violation raises ``ForeignKeyConstraintError``."""
        async with self._session_factory() as session:
            try:
                row = await DocumentRepo(session).update_fields(document_id, patch.changes())
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.warning("document_update_integrity_error", document_id=document_id, error=str(exc.orig))
                raise ForeignKeyConstraintError(f"Foreign key constraint violated: {exc.orig}") from exc
            return DocumentRecord.model_validate(row, from_attributes=True) if row else None

    async def upsert_folder(self, user_id: str, year: int, month: int) -> str:
        async with self._session_factory() as session:
            folder = await FolderRepo(session).upsert(user_id, year, month)
            await session.commit()
            return folder.id

    async def append_audit_log(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            await AuditLogRepo(session).create(AuditLog(
                user_id=entry.user_id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                metadata_json=entry.metadata,
                created_at=entry.created_at.replace(tzinfo=None),
            ))
            await session.commit()
