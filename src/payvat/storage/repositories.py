"""Async CRUD repositories for all storage models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payvat.storage.models import AuditLog, Document, DocumentFolder, utcnow


# ── Document ─────────────────────────────────────────────────────────────────


class DocumentRepo:
    """CRUD operations for the ``documents`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, document: Document) -> Document:
        self._session.add(document)
        await self._session.flush()
        await self._session.refresh(document)
        return document

    async def get_by_id(self, document_id: str, owner_id: str | None = None) -> Document | None:
        """Fetch a document; with ``owner_id`` only that user's document matches."""
        stmt = select(Document).where(Document.id == document_id)
        if owner_id is not None:
            stmt = stmt.where(Document.user_id == owner_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_fields(self, document_id: str, values: dict[str, Any]) -> Document | None:
        stmt = (
            update(Document)
            .where(Document.id == document_id)
            .values(**values, updated_at=utcnow())
        )
        await self._session.execute(stmt)
        await self._session.flush()
        return await self.get_by_id(document_id)


# ── Folder ───────────────────────────────────────────────────────────────────


class FolderRepo:
    """Create-or-touch operations for the ``document_folders`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, user_id: str, year: int, month: int) -> DocumentFolder | None:
        stmt = select(DocumentFolder).where(
            DocumentFolder.user_id == user_id,
            DocumentFolder.year == year,
            DocumentFolder.month == month,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, year: int, month: int) -> DocumentFolder:
        """Return the folder for ``(user_id, year, month)``, creating it with zeroed aggregates.

        An existing folder only gets ``last_document_at`` touched.
        """
        now = utcnow()
        folder = await self.get(user_id, year, month)
        if folder is not None:
            folder.last_document_at = now
            await self._session.flush()
            return folder

        folder = DocumentFolder(user_id=user_id, year=year, month=month, last_document_at=now)
        self._session.add(folder)
        try:
            await self._session.flush()
        except IntegrityError:
            # Created concurrently by another request.
            await self._session.rollback()
            folder = await self.get(user_id, year, month)
            if folder is None:
                raise
            folder.last_document_at = now
            await self._session.flush()
        return folder


# ── Audit log ────────────────────────────────────────────────────────────────


class AuditLogRepo:
    """Append-only access to the ``audit_logs`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, entry: AuditLog) -> AuditLog:
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_for_entity(self, entity_id: str) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
