"""Error taxonomy for document processing and its mapping to user-facing responses."""
from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    INVALID_JSON = "INVALID_JSON"
    DOCUMENT_ACCESS_ERROR = "DOCUMENT_ACCESS_ERROR"
    INVALID_FILE_DATA = "INVALID_FILE_DATA"
    PROCESSING_EXCEPTION = "PROCESSING_EXCEPTION"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    PDF_IMAGE_BASED = "PDF_IMAGE_BASED"
    PDF_ENCRYPTED = "PDF_ENCRYPTED"
    PDF_PROCESSING_ERROR = "PDF_PROCESSING_ERROR"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    DATABASE_ERROR = "DATABASE_ERROR"
    DOCUMENT_UPDATE_ERROR = "DOCUMENT_UPDATE_ERROR"
    FOREIGN_KEY_CONSTRAINT_ERROR = "FOREIGN_KEY_CONSTRAINT_ERROR"
    VAT_EXTRACTION_ERROR = "VAT_EXTRACTION_ERROR"
    DATA_PROCESSING_ERROR = "DATA_PROCESSING_ERROR"
    MODULE_ERROR = "MODULE_ERROR"


class ProcessingError(Exception):
    """An error that maps directly onto an error response."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        *,
        http_status: int = 500,
        suggestions: list[str] | None = None,
        technical_details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.http_status = http_status
        self.suggestions = suggestions or []
        self.technical_details = technical_details or {}


class InvalidRequestError(ProcessingError):
    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_JSON, **kwargs):
        super().__init__(message, error_code, http_status=400, **kwargs)


class DocumentAccessError(ProcessingError):
    def __init__(self, message: str = "Document not found or not authorized", **kwargs):
        super().__init__(message, ErrorCode.DOCUMENT_ACCESS_ERROR, http_status=404, **kwargs)


class DocumentUpdateError(ProcessingError):
    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.DOCUMENT_UPDATE_ERROR, http_status=500, **kwargs)


class ForeignKeyConstraintError(Exception):
    """Raised by the persistence adapter when a write violates a referential constraint."""


class EngineUnavailableError(Exception):
    """An extraction engine could not run; the next engine in the chain should be tried."""


RETRY_DELAY_MS = 5000
DATABASE_RETRY_DELAY_MS = 30000

# Ordered: the first rule whose keywords match the lowered message wins.
_EXCEPTION_RULES: list[tuple[tuple[str, ...], ErrorCode, str, list[str]]] = [
    (
        ("foreign key constraint", "constraint violation"),
        ErrorCode.FOREIGN_KEY_CONSTRAINT_ERROR,
        "Document folder relationship error - processing incomplete",
        [
            "The document was uploaded but automatic folder organization failed",
            "You can manually organize the document or try re-processing it",
            "Contact support if this issue persists",
        ],
    ),
    (
        ("sqlalchemy", "database", "connection"),
        ErrorCode.DATABASE_ERROR,
        "Database connection failed",
        ["Please try again in a moment", "If the issue persists, contact support"],
    ),
    (
        ("document update failed",),
        ErrorCode.DOCUMENT_UPDATE_ERROR,
        "Failed to save document processing results",
        [
            "The document may have been processed but results could not be saved",
            "Try re-processing the document",
            "Check that the document still exists and is accessible",
        ],
    ),
    (
        ("document not found", "not authorized"),
        ErrorCode.DOCUMENT_ACCESS_ERROR,
        "Document not found or access denied",
        [
            "Make sure the document was uploaded successfully",
            "Try refreshing the page and uploading again",
        ],
    ),
    (
        ("openai", "api key", "rate limit"),
        ErrorCode.AI_SERVICE_ERROR,
        "AI processing service temporarily unavailable",
        [
            "The system will use alternative processing methods",
            "Document processing may still succeed with reduced accuracy",
        ],
    ),
    (
        ("pdf",),
        ErrorCode.PDF_PROCESSING_ERROR,
        "PDF processing failed",
        [
            "Try converting the PDF to an image format (PNG/JPG)",
            "Ensure the PDF is not password-protected or corrupted",
        ],
    ),
    (
        ("import", "module", "cannot find"),
        ErrorCode.MODULE_ERROR,
        "Service dependency error",
        ["Please contact support - this indicates a server configuration issue"],
    ),
    (
        ("json", "parse", "serializ"),
        ErrorCode.DATA_PROCESSING_ERROR,
        "Data processing error",
        [
            "The document may contain unexpected data structures",
            "Try uploading a different document format",
        ],
    ),
]


def categorize_exception(exc: BaseException) -> tuple[str, ErrorCode, list[str]]:
    """Classify an unexpected exception into (message, code, suggestions)."""
    if isinstance(exc, ProcessingError):
        return exc.message, exc.error_code, list(exc.suggestions)
    if isinstance(exc, ForeignKeyConstraintError):
        rule = _EXCEPTION_RULES[0]
        return rule[2], rule[1], list(rule[3])
    if isinstance(exc, (ImportError, ModuleNotFoundError)):
        rule = next(r for r in _EXCEPTION_RULES if r[1] == ErrorCode.MODULE_ERROR)
        return rule[2], rule[1], list(rule[3])

    message = str(exc)
    lowered = f"{type(exc).__name__} {message}".lower()
    for keywords, code, friendly, suggestions in _EXCEPTION_RULES:
        if any(k in lowered for k in keywords):
            return friendly, code, list(suggestions)

    if "vat" in lowered and "extraction" in lowered:
        return (
            "VAT data extraction failed",
            ErrorCode.VAT_EXTRACTION_ERROR,
            [
                "The document was processed but VAT amounts could not be extracted",
                "Ensure the document contains clear VAT information",
                "Try using a higher quality scan or different document format",
            ],
        )
    return message or "Document processing failed", ErrorCode.PROCESSING_ERROR, []


def categorize_engine_error(error: str | None) -> tuple[str, ErrorCode, list[str]]:
    """Classify a logically failed extraction (HTTP 422) from its error text."""
    lowered = (error or "").lower()
    if "pdf" in lowered and "image-based" in lowered:
        return (
            "PDF appears to be image-based or scanned",
            ErrorCode.PDF_IMAGE_BASED,
            [
                "Try converting the PDF to a high-quality image (PNG/JPG) and upload that instead",
                "Ensure the PDF contains selectable text, not just scanned images",
            ],
        )
    if "pdf" in lowered and "encrypted" in lowered:
        return (
            "PDF is password-protected or encrypted",
            ErrorCode.PDF_ENCRYPTED,
            [
                "Remove password protection from the PDF before uploading",
                "Try saving the PDF as a new file to remove encryption",
            ],
        )
    if "unsupported" in lowered or "mime" in lowered:
        return (
            "File type not supported",
            ErrorCode.UNSUPPORTED_FILE_TYPE,
            [
                "Supported formats: PDF, PNG, JPG, TXT, CSV",
                "Try converting your document to PDF or image format",
            ],
        )
    if "openai" in lowered or " ai " in f" {lowered} " or "ai processing" in lowered:
        return (
            "AI document analysis temporarily unavailable",
            ErrorCode.AI_SERVICE_UNAVAILABLE,
            [
                "The system will use alternative processing methods",
                "Some document types may have reduced accuracy",
            ],
        )
    return "Document processing failed", ErrorCode.PROCESSING_ERROR, []


def retry_delay_ms(code: ErrorCode) -> int:
    return DATABASE_RETRY_DELAY_MS if code == ErrorCode.DATABASE_ERROR else RETRY_DELAY_MS
