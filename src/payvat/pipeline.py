"""Document processor: validate → extract (enhanced → legacy) → resolve → persist → respond.

One request-scoped run per call. The stored document is read once at the
start and written once at the end; the folder upsert, the audit entry and the
cache invalidation around that write are best-effort and can never turn a
successful extraction into an error response.
"""
from __future__ import annotations

import json
import re
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import AggregateCache
from .config import Settings
from .engines.base import DocumentInput, EngineResult, ExtractionEngine
from .engines.enhanced import EnhancedEngine
from .engines.legacy import LegacyEngine
from .errors import (
    DocumentAccessError,
    DocumentUpdateError,
    ErrorCode,
    ForeignKeyConstraintError,
    InvalidRequestError,
    ProcessingError,
    categorize_engine_error,
    categorize_exception,
    retry_delay_ms,
)
from .extraction.client import ExtractionClient, decode_file_data
from .extraction.prompt_diagnostic import run_prompt_diagnostic
from .llm.diagnostics import AIStatus, ConnectivityProbe, check_ai_status
from .llm.openai_client import OpenAIClient
from .models.classification import ComplianceAssessment, classify
from .models.documents import AuditEntry, AuthUser, DocumentPatch, DocumentRecord, ProcessRequest, RequestContext
from .models.extraction import DateResolution, ExtractionResult, TotalResolution
from .storage.adapter import DocumentStore, SqlAlchemyDocumentStore
from .storage.database import get_session_factory
from .telemetry import EventEmitter, StructlogEmitter
from .utils.logging import bind_request_context, clear_request_context
from .utils.resilience import AllStrategiesFailed, first_success, run_best_effort
from .vat.date_parsing import resolve_date
from .vat.number_parsing import parse_amount
from .vat.totals import resolve_total

logger = structlog.get_logger(__name__)

STATUS_MARKER = "PROCESSING_STATUS"
_STATUS_BLOB = re.compile(r'\[' + STATUS_MARKER + r':.*?\](?=\s*$)', re.DOTALL)
_EURO_AMOUNT = re.compile(r'€([0-9,]+\.?[0-9]*)')

CACHED_CONFIDENCE = 0.8

AI_DISABLED_WARNINGS = [
    "AI processing is disabled - document processed with legacy methods only",
    "VAT extraction accuracy may be reduced",
    "To enable full AI processing, configure PAYVAT_OPENAI_API_KEY in the environment",
]
TOTAL_ESTIMATE_WARNING = (
    "Invoice total was estimated from the VAT amount at the standard rate - verify it against the document"
)
ALTERNATIVE_ACTIONS = [
    "Try re-processing the document",
    "Check the document format and quality",
    "Contact support if the issue persists",
]


class ProcessingState(StrEnum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    EXTRACTING = "EXTRACTING"
    NORMALIZED = "NORMALIZED"
    CLASSIFIED = "CLASSIFIED"
    PERSISTED = "PERSISTED"
    RESPONDED = "RESPONDED"
    ERRORED = "ERRORED"


@dataclass
class ProcessingResponse:
    status_code: int
    body: dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


@dataclass
class ProcessingRun:
    """Mutable per-request state."""
    document_id: str | None = None
    state: ProcessingState = ProcessingState.RECEIVED
    document: DocumentRecord | None = None
    started: float = field(default_factory=time.monotonic)
    history: list[ProcessingState] = field(default_factory=lambda: [ProcessingState.RECEIVED])

    def advance(self, state: ProcessingState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def status_marker(status: dict[str, Any]) -> str:
    return f"[{STATUS_MARKER}: {json.dumps(status)}]"


def cached_amounts(scan_result: str | None) -> list[float]:
    """Euro amounts mentioned in a stored scan summary, ignoring the status blob."""
    summary = _STATUS_BLOB.sub("", scan_result or "")
    amounts = []
    for raw in _EURO_AMOUNT.findall(summary):
        try:
            amounts.append(parse_amount(raw))
        except ValueError:
            continue
    return amounts


def error_body(
    message: str,
    code: ErrorCode,
    suggestions: list[str] | None = None,
    technical_details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "error": message,
        "errorCode": str(code),
        "suggestions": suggestions or [],
        "timestamp": _now_iso(),
    }
    if technical_details:
        body["technicalDetails"] = technical_details
    return body


def build_extraction_client(
    settings: Settings,
    emitter: EventEmitter,
) -> tuple[ExtractionClient | None, ConnectivityProbe | None]:
    """OpenAI-backed extraction client and its connectivity probe, or ``(None, None)`` without a key."""
    if not settings.api_key_configured:
        return None, None
    llm = OpenAIClient(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.vision_model,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
    )
    client = ExtractionClient(
        llm,
        emitter,
        vision_model=settings.vision_model,
        text_model=settings.text_model,
        timeout=settings.llm_timeout,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        max_pdf_pages=settings.max_pdf_pages,
        pdf_render_dpi=settings.pdf_render_dpi,
    )
    return client, llm.ping


def build_engines(settings: Settings, client: ExtractionClient | None) -> list[ExtractionEngine]:
    """Engines in fallback order: enhanced (when enabled) then legacy."""
    engines: list[ExtractionEngine] = []
    if settings.use_enhanced_processing:
        engines.append(EnhancedEngine(client, ai_enabled=settings.api_key_configured))
    engines.append(LegacyEngine())
    return engines


class DocumentProcessor:
    """Runs one document through extraction and records the outcome."""

    def __init__(
        self,
        store: DocumentStore,
        engines: list[ExtractionEngine],
        *,
        settings: Settings,
        emitter: EventEmitter,
        cache: AggregateCache | None = None,
        connectivity_probe: ConnectivityProbe | None = None,
        diagnostic_client: ExtractionClient | None = None,
    ):
        if not engines:
            raise ValueError("at least one extraction engine is required")
        self._store = store
        self._engines = engines
        self._settings = settings
        self._emitter = emitter
        self._cache = cache
        self._probe = connectivity_probe
        self._diagnostic_client = diagnostic_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        emitter: EventEmitter | None = None,
        cache: AggregateCache | None = None,
    ) -> "DocumentProcessor":
        emitter = emitter or StructlogEmitter()
        client, probe = build_extraction_client(settings, emitter)
        return cls(
            SqlAlchemyDocumentStore(session_factory or get_session_factory()),
            build_engines(settings, client),
            settings=settings,
            emitter=emitter,
            cache=cache or AggregateCache(settings.aggregate_cache_ttl_seconds),
            connectivity_probe=probe,
            diagnostic_client=client,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_raw(
        self,
        body: bytes | str,
        user: AuthUser | None,
        context: RequestContext | None = None,
    ) -> ProcessingResponse:
        """Parse a raw request body, then process. Malformed JSON never reaches the store."""
        try:
            payload = json.loads(body or b"")
        except (json.JSONDecodeError, UnicodeDecodeError):
            return ProcessingResponse(400, error_body(
                "Invalid JSON in request body",
                ErrorCode.INVALID_JSON,
                [
                    "Check that your request contains valid JSON",
                    "Ensure Content-Type header is set to application/json",
                ],
            ))
        if not isinstance(payload, dict):
            return ProcessingResponse(400, error_body("Request body must be a JSON object", ErrorCode.INVALID_JSON))
        try:
            request = ProcessRequest.model_validate(payload)
        except ValidationError as exc:
            return ProcessingResponse(400, error_body(
                "Document ID is required",
                ErrorCode.INVALID_JSON,
                technical_details={"errors": exc.errors(include_url=False, include_context=False)},
            ))
        return await self.process(request, user, context)

    async def process(
        self,
        request: ProcessRequest,
        user: AuthUser | None,
        context: RequestContext | None = None,
    ) -> ProcessingResponse:
        run = ProcessingRun(document_id=request.document_id)
        bind_request_context(document_id=request.document_id, user_id=user.id if user else "guest")
        try:
            response = await self._run(run, request, user, context or RequestContext())
            run.advance(ProcessingState.RESPONDED)
            return response
        except ProcessingError as exc:
            run.advance(ProcessingState.ERRORED)
            if exc.http_status >= 500:
                return await self._handle_unexpected(run, exc)
            logger.info("processing_rejected", error_code=str(exc.error_code), status=exc.http_status)
            return ProcessingResponse(
                exc.http_status,
                error_body(exc.message, exc.error_code, exc.suggestions, exc.technical_details),
            )
        except Exception as exc:
            run.advance(ProcessingState.ERRORED)
            return await self._handle_unexpected(run, exc)
        finally:
            clear_request_context()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(
        self,
        run: ProcessingRun,
        request: ProcessRequest,
        user: AuthUser | None,
        context: RequestContext,
    ) -> ProcessingResponse:
        document = await self._store.find_document(request.document_id, user.id if user else None)
        if document is None:
            raise DocumentAccessError(
                technical_details={
                    "documentId": request.document_id,
                    "userContext": "authenticated" if user else "anonymous",
                },
            )
        run.document = document

        if document.is_cached and not request.force_reprocess:
            logger.info("document_cached", document_id=document.id)
            return self._cached_response(document)

        self._validate_file_data(document)
        run.advance(ProcessingState.VALIDATED)

        ai_status = await check_ai_status(self._settings, self._probe)
        prompt_diagnostic = None
        if request.debug_mode and ai_status.api_enabled and self._diagnostic_client is not None:
            prompt_diagnostic = await run_prompt_diagnostic(
                self._diagnostic_client, document.file_data, document.mime_type, document.category,
            )

        run.advance(ProcessingState.EXTRACTING)
        extraction_started = time.monotonic()
        engine_result = await self._extract(run, DocumentInput.from_record(document))
        extraction_ms = int((time.monotonic() - extraction_started) * 1000)
        self._emit_attempt(document, engine_result, extraction_ms)

        if not engine_result.success or engine_result.extracted_data is None:
            return await self._logical_failure(run, engine_result)

        result = engine_result.extracted_data
        try:
            run.advance(ProcessingState.NORMALIZED)
            date_resolution = resolve_date(
                result.invoice_date,
                min_year=self._settings.min_plausible_year,
                max_year=self._settings.max_plausible_year,
            )
            total = resolve_total(
                result,
                "\n".join(part for part in (result.evidence_text, engine_result.scan_result) if part),
                self._settings.standard_vat_rate,
            )
            assessment = classify(result)
            run.advance(ProcessingState.CLASSIFIED)
        except Exception as exc:
            logger.error("post_extraction_failed", document_id=document.id, error=str(exc))
            await self._mark_failed(run, str(exc), ErrorCode.PROCESSING_EXCEPTION)
            raise ProcessingError(
                "Document processing failed",
                ErrorCode.PROCESSING_EXCEPTION,
                http_status=500,
                suggestions=[
                    "Try uploading the document again",
                    "Ensure the document is not corrupted",
                    "Contact support if the issue persists",
                ],
                technical_details={"error": str(exc)},
            ) from exc

        updated = await self._persist(run, document, engine_result, date_resolution, total, user)
        run.advance(ProcessingState.PERSISTED)

        if user is not None and result.has_amounts:
            await run_best_effort(
                "audit_log",
                lambda: self._store.append_audit_log(AuditEntry(
                    user_id=user.id,
                    entity_id=document.id,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    metadata={
                        "extractedData": result.to_json_dict(),
                        "fileName": document.original_name,
                        "category": document.category,
                        "confidence": result.confidence,
                        "timestamp": _now_iso(),
                    },
                )),
                self._emitter,
            )
        if self._cache is not None:
            cache = self._cache
            await run_best_effort(
                "cache_invalidation",
                lambda: cache.invalidate_user(user.id if user else None),
                self._emitter,
            )

        self._emitter.emit(
            "document_processed",
            document_id=document.id,
            engine=engine_result.engine,
            outcome=engine_result.outcome,
            amounts=result.all_amounts,
            confidence=result.confidence,
            compliance=str(assessment.status),
            processing_ms=run.elapsed_ms,
        )
        return self._success_response(run, updated, engine_result, assessment, total, ai_status, prompt_diagnostic)

    def _validate_file_data(self, document: DocumentRecord) -> None:
        if not document.file_data:
            raise InvalidRequestError("Document file data not available", ErrorCode.INVALID_FILE_DATA)
        try:
            decode_file_data(document.file_data)
        except ValueError as exc:
            raise InvalidRequestError(
                "Invalid file data format - not valid base64",
                ErrorCode.INVALID_FILE_DATA,
                technical_details={"error": str(exc)},
            ) from exc

    async def _extract(self, run: ProcessingRun, document: DocumentInput) -> EngineResult:
        def on_failure(name: str, exc: Exception) -> None:
            self._emitter.emit("engine_fallback", failed_engine=name, error=str(exc), error_type=type(exc).__name__)

        try:
            _, result = await first_success(
                [(engine.name, lambda engine=engine: engine.process(document)) for engine in self._engines],
                on_failure=on_failure,
            )
        except AllStrategiesFailed as exc:
            last = exc.last_error
            await self._mark_failed(run, str(last or exc), ErrorCode.AI_SERVICE_ERROR)
            raise ProcessingError(
                "AI processing service temporarily unavailable",
                ErrorCode.AI_SERVICE_ERROR,
                http_status=500,
                suggestions=[
                    "All extraction engines failed for this document",
                    "Try again in a few minutes",
                ],
                technical_details={"errors": [f"{name}: {error}" for name, error in exc.errors]},
            ) from exc
        return result

    def _emit_attempt(self, document: DocumentRecord, engine_result: EngineResult, elapsed_ms: int) -> None:
        data = engine_result.extracted_data
        self._emitter.emit(
            "extraction_attempt",
            file_name=document.original_name,
            file_type=document.original_name.rsplit(".", 1)[-1].lower() if "." in document.original_name else "other",
            processing_method="ai_vision" if engine_result.engine == "enhanced" else "legacy_text",
            success=engine_result.success,
            extracted_amount=data.vat_sum if data else 0.0,
            confidence=data.confidence if data else 0.0,
            processing_time_ms=elapsed_ms,
            errors=[engine_result.error] if engine_result.error else [],
            warnings=list(engine_result.warnings),
        )

    async def _logical_failure(self, run: ProcessingRun, engine_result: EngineResult) -> ProcessingResponse:
        message, code, suggestions = categorize_engine_error(engine_result.error)
        logger.info("extraction_unprocessable", engine=engine_result.engine, error_code=str(code),
                    error=engine_result.error)
        await self._mark_failed(run, engine_result.error or message, code)
        run.advance(ProcessingState.ERRORED)
        body = error_body(message, code, suggestions, {
            "originalError": engine_result.error,
            "scanResult": engine_result.scan_result,
            "engine": engine_result.engine,
        })
        body["extractedData"] = (
            engine_result.extracted_data or ExtractionResult.empty("Processing failed")
        ).to_json_dict()
        self._emitter.emit("document_failed", document_id=run.document_id, error_code=str(code), status=422)
        return ProcessingResponse(422, body)

    async def _persist(
        self,
        run: ProcessingRun,
        document: DocumentRecord,
        engine_result: EngineResult,
        date_resolution: DateResolution,
        total: TotalResolution,
        user: AuthUser | None,
    ) -> DocumentRecord:
        result = engine_result.extracted_data
        status = {
            "status": "completed",
            "timestamp": _now_iso(),
            "processingTime": run.elapsed_ms,
            "engine": engine_result.engine,
            "vatExtracted": result.has_amounts,
            "confidence": result.confidence,
            "totalProvenance": str(total.provenance),
        }
        fields: dict[str, Any] = {
            "is_scanned": True,
            "scan_result": f"{engine_result.scan_result}\n\n{status_marker(status)}",
            "invoice_total": total.amount,
            "extraction_confidence": result.confidence,
            "date_extraction_confidence": date_resolution.confidence,
            "extracted_date": datetime.combine(date_resolution.value, datetime.min.time()),
        }

        # The folder must exist before year/month point at it.
        if date_resolution.found and user is not None:
            year, month = date_resolution.value.year, date_resolution.value.month
            ok, _ = await run_best_effort(
                "folder_upsert",
                lambda: self._store.upsert_folder(user.id, year, month),
                self._emitter,
            )
            if ok:
                fields["extracted_year"] = year
                fields["extracted_month"] = month
            else:
                logger.warning("folder_link_degraded", document_id=document.id, year=year, month=month)

        patch = DocumentPatch(**fields)
        try:
            updated = await self._store.update_document(document.id, patch)
        except ForeignKeyConstraintError as exc:
            if not patch.links_folder:
                raise DocumentUpdateError(f"Document update failed: {exc}") from exc
            logger.warning("document_update_retry_without_folder", document_id=document.id, error=str(exc))
            try:
                updated = await self._store.update_document(document.id, patch.without_folder_link())
            except Exception as retry_exc:
                raise DocumentUpdateError(
                    f"Document update failed: {exc}. Fallback also failed: {retry_exc}",
                ) from retry_exc

        if updated is None:
            raise DocumentUpdateError("Document update failed - document no longer exists")
        return updated

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _mark_failed(
        self,
        run: ProcessingRun,
        message: str,
        code: ErrorCode,
        suggestions: list[str] | None = None,
    ) -> None:
        """Record a failure on the document so it never looks stuck in processing."""
        if run.document is None:
            return
        status = {
            "status": "failed",
            "timestamp": _now_iso(),
            "processingTime": run.elapsed_ms,
            "error": message,
            "errorCode": str(code),
            "retryable": True,
        }
        lines = [f"PROCESSING FAILED: {message}", "", f"Error Code: {code}"]
        if suggestions:
            lines += ["", "Details:", *(f"• {s}" for s in suggestions)]
        lines += ["", "This document can be re-processed by trying the operation again."]
        scan_result = "\n".join(lines) + f"\n\n{status_marker(status)}"

        document_id = run.document.id
        await run_best_effort(
            "mark_failed",
            lambda: self._store.update_document(document_id, DocumentPatch(is_scanned=True, scan_result=scan_result)),
            self._emitter,
        )

    async def _handle_unexpected(self, run: ProcessingRun, exc: BaseException) -> ProcessingResponse:
        message, code, suggestions = categorize_exception(exc)
        logger.error(
            "document_processing_failed",
            document_id=run.document_id,
            state=str(run.history[-2]) if len(run.history) > 1 else str(run.state),
            error_code=str(code),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        if not isinstance(exc, ProcessingError) or exc.error_code not in (
            ErrorCode.PROCESSING_EXCEPTION, ErrorCode.AI_SERVICE_ERROR,
        ):
            await self._mark_failed(run, message, code, suggestions)
        self._emitter.emit("document_failed", document_id=run.document_id, error_code=str(code), status=500)

        technical = dict(exc.technical_details) if isinstance(exc, ProcessingError) else {}
        if self._settings.is_development:
            technical["stack"] = "".join(traceback.format_exception(exc))[:1000]
        body = error_body(message, code, suggestions, technical)
        body["recoveryInstructions"] = {
            "canRetry": True,
            "retryDelay": retry_delay_ms(code),
            "alternativeActions": list(ALTERNATIVE_ACTIONS),
        }
        if self._settings.is_development:
            body["debugInfo"] = {
                "originalError": str(exc),
                "errorType": type(exc).__name__,
                "state": str(run.state),
            }
        return ProcessingResponse(500, body)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _cached_response(self, document: DocumentRecord) -> ProcessingResponse:
        amounts = cached_amounts(document.scan_result)
        extracted = None
        if amounts:
            extracted = ExtractionResult(
                purchase_vat=amounts,
                confidence=CACHED_CONFIDENCE,
                extracted_text=["Previously processed"],
            ).to_json_dict()
        return ProcessingResponse(200, {
            "success": True,
            "message": "Document already processed",
            "document": {
                "id": document.id,
                "fileName": document.original_name,
                "isScanned": document.is_scanned,
                "scanResult": document.scan_result,
                "category": document.category,
                "extractedData": extracted,
            },
            "extractedData": extracted,
            "processingInfo": {
                "timestamp": _now_iso(),
                "processingType": "CACHED",
                "message": "Document was previously processed successfully",
            },
        })

    def _success_response(
        self,
        run: ProcessingRun,
        document: DocumentRecord,
        engine_result: EngineResult,
        assessment: ComplianceAssessment,
        total: TotalResolution,
        ai_status: AIStatus,
        prompt_diagnostic: dict[str, Any] | None,
    ) -> ProcessingResponse:
        result = engine_result.extracted_data
        extracted = result.to_json_dict()

        warnings: list[str] = []
        if not ai_status.api_enabled:
            warnings.extend(AI_DISABLED_WARNINGS)
        if total.is_estimate:
            warnings.append(TOTAL_ESTIMATE_WARNING)
        warnings.extend(w for w in engine_result.warnings if w not in warnings)

        body: dict[str, Any] = {
            "success": True,
            "document": {
                "id": document.id,
                "fileName": document.original_name,
                "isScanned": document.is_scanned,
                "scanResult": document.scan_result,
                "category": document.category,
                "extractedData": extracted,
            },
            "extractedData": extracted,
            "processingInfo": {
                "engine": engine_result.engine,
                "processingSteps": engine_result.processing_steps,
                "processingType": "AI_ENHANCED" if engine_result.engine == "enhanced" else "LEGACY",
                "outcome": engine_result.outcome,
                "timestamp": _now_iso(),
                "totalProcessingTime": run.elapsed_ms,
                "taxComplianceStatus": str(assessment.status),
                "complianceReason": str(assessment.reason),
                "complianceMessage": assessment.message,
                "invoiceTotal": total.amount,
                "totalProvenance": str(total.provenance),
                "hasAPIConnectivity": ai_status.connected,
                "warnings": warnings,
            },
            "validationCheck": {
                "extractedAmounts": result.all_amounts,
                "hasValidExtraction": result.has_amounts,
                "confidence": result.confidence,
                "complianceStatus": str(assessment.status),
                "complianceReason": str(assessment.reason),
            },
            "openAIStatus": ai_status.to_json_dict(),
        }
        if prompt_diagnostic is not None:
            body["promptDiagnostic"] = prompt_diagnostic
        if self._settings.is_development:
            text = result.evidence_text
            body["debugInfo"] = {
                "aiExtractedText": text[:1000] + ("..." if len(text) > 1000 else "") if text else None,
                "textLength": len(text),
                "containsTotalAmountVAT": "total amount vat" in text.lower(),
                "stateHistory": [str(s) for s in run.history],
            }
        return ProcessingResponse(200, body)
