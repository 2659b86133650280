"""SQLAlchemy ORM models for documents, monthly folders and the audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    # Timestamp columns are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DocumentFolder(Base):
    """Per-user, per-month bucket. Aggregates are maintained elsewhere."""
    __tablename__ = "document_folders"
    __table_args__ = (UniqueConstraint("user_id", "year", "month", name="uq_document_folders_user_year_month"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    total_sales_amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    total_purchase_amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    total_sales_vat: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    total_purchase_vat: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    total_net_vat: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    document_count: Mapped[int] = mapped_column(Integer, default=0)
    sales_document_count: Mapped[int] = mapped_column(Integer, default=0)
    purchase_document_count: Mapped[int] = mapped_column(Integer, default=0)
    last_document_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Document(Base):
    __tablename__ = "documents"
    # Year/month may only be set once the matching folder exists. With any
    # column NULL the constraint is not checked (MATCH SIMPLE).
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "extracted_year", "extracted_month"],
            ["document_folders.user_id", "document_folders.year", "document_folders.month"],
            name="fk_documents_folder",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), index=True, nullable=True)
    file_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str] = mapped_column(String(100))
    original_name: Mapped[str] = mapped_column(String(512))
    category: Mapped[str] = mapped_column(String(50))
    is_scanned: Mapped[bool] = mapped_column(Boolean, default=False)
    scan_result: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_total: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    extraction_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    date_extraction_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    extracted_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    extracted_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extracted_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    action: Mapped[str] = mapped_column(String(100))
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[str] = mapped_column(String(64), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
