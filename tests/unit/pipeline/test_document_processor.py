"""Test the document processor end to end with an in-memory store."""
from datetime import date, datetime
import pytest
from unittest.mock import patch
from payvat.cache import AggregateCache
from payvat.engines.legacy import LegacyEngine
from payvat.errors import EngineUnavailableError, ForeignKeyConstraintError
from payvat.models.documents import AuthUser, ProcessRequest, RequestContext
from payvat.pipeline import (
    AI_DISABLED_WARNINGS,
    STATUS_MARKER,
    TOTAL_ESTIMATE_WARNING,
    DocumentProcessor,
    cached_amounts,
    status_marker,
)
from tests.factories import (
    FakeDocumentStore,
    StubEngine,
    make_document,
    make_engine_result,
    make_extraction_result,
    make_settings,
)

CONTEXT = RequestContext(ip_address="10.0.0.1", user_agent="pytest")


def make_processor(store, engines, emitter, cache=None, **settings):
    return DocumentProcessor(
        store,
        engines,
        settings=make_settings(**settings),
        emitter=emitter,
        cache=cache or AggregateCache(),
    )


def request(**fields):
    return ProcessRequest(document_id=fields.pop("document_id", "doc-1"), **fields)


class TestSuccessfulProcessing:
    @pytest.mark.asyncio
    async def test_extracts_and_persists(self, store, user, emitter):
        cache = AggregateCache()
        cache.set("user-1", {"totalPurchaseVAT": 0})
        processor = make_processor(store, [StubEngine()], emitter, cache=cache)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        assert response.success is True
        doc = store.documents["doc-1"]
        assert doc.is_scanned is True
        assert doc.invoice_total == 100.0
        assert doc.extraction_confidence == 0.9
        assert (doc.extracted_year, doc.extracted_month) == (2025, 1)
        assert doc.extracted_date == datetime(2025, 1, 15)
        assert f"[{STATUS_MARKER}: " in doc.scan_result
        assert '"totalProvenance": "vat_estimate"' in doc.scan_result
        assert store.folders == {("user-1", 2025, 1)}
        assert cache.get("user-1") is None

    @pytest.mark.asyncio
    async def test_response_shape(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)

        body = (await processor.process(request(), user, CONTEXT)).body

        assert body["extractedData"]["purchaseVAT"] == [23.0]
        assert body["document"]["extractedData"] == body["extractedData"]
        info = body["processingInfo"]
        assert info["engine"] == "enhanced"
        assert info["processingType"] == "AI_ENHANCED"
        assert info["taxComplianceStatus"] == "COMPLIANT"
        assert info["invoiceTotal"] == 100.0
        assert info["totalProvenance"] == "vat_estimate"
        assert info["hasAPIConnectivity"] is False
        assert TOTAL_ESTIMATE_WARNING in info["warnings"]
        assert info["warnings"][:3] == AI_DISABLED_WARNINGS
        assert body["validationCheck"]["hasValidExtraction"] is True
        assert body["openAIStatus"]["apiEnabled"] is False
        assert "debugInfo" not in body

    @pytest.mark.asyncio
    async def test_audit_entry(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        await processor.process(request(), user, CONTEXT)

        [entry] = store.audit_entries
        assert entry.user_id == "user-1"
        assert entry.entity_id == "doc-1"
        assert entry.action == "VAT_DATA_EXTRACTED"
        assert entry.ip_address == "10.0.0.1"
        assert entry.metadata["extractedData"]["purchaseVAT"] == [23.0]
        assert entry.metadata["fileName"] == "invoice.txt"

    @pytest.mark.asyncio
    async def test_events(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        await processor.process(request(), user, CONTEXT)

        assert emitter.names() == ["extraction_attempt", "document_processed"]
        attempt = emitter.named("extraction_attempt")[0].fields
        assert attempt["processing_method"] == "ai_vision"
        assert attempt["extracted_amount"] == 23.0
        assert attempt["file_type"] == "txt"

    @pytest.mark.asyncio
    async def test_explicit_total_wins(self, store, user, emitter):
        result = make_engine_result(extracted_data=make_extraction_result(total_amount=123.0))
        processor = make_processor(store, [StubEngine(result=result)], emitter)

        body = (await processor.process(request(), user, CONTEXT)).body

        assert body["processingInfo"]["invoiceTotal"] == 123.0
        assert body["processingInfo"]["totalProvenance"] == "explicit"
        assert TOTAL_ESTIMATE_WARNING not in body["processingInfo"]["warnings"]

    @pytest.mark.asyncio
    async def test_zero_rated_is_compliant(self, store, user, emitter):
        result = make_engine_result(extracted_data=make_extraction_result(purchase_vat=[0.0]))
        processor = make_processor(store, [StubEngine(result=result)], emitter)

        body = (await processor.process(request(), user, CONTEXT)).body

        assert body["processingInfo"]["taxComplianceStatus"] == "COMPLIANT"
        assert body["validationCheck"]["extractedAmounts"] == [0.0]

    @pytest.mark.asyncio
    async def test_development_debug_info(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter, environment="development")

        body = (await processor.process(request(), user, CONTEXT)).body

        debug = body["debugInfo"]
        assert debug["containsTotalAmountVAT"] is True
        assert debug["stateHistory"][0] == "RECEIVED"
        assert debug["stateHistory"][-1] == "PERSISTED"

    @pytest.mark.asyncio
    async def test_anonymous_request(self, store, emitter):
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), None, CONTEXT)

        assert response.status_code == 200
        assert store.folders == set()
        assert store.audit_entries == []
        assert store.documents["doc-1"].extracted_year is None


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, store, user, emitter):
        engine = StubEngine()
        processor = make_processor(store, [engine], emitter)

        await processor.process(request(), user, CONTEXT)
        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        assert engine.calls == 1
        assert response.body["processingInfo"]["processingType"] == "CACHED"
        assert response.body["extractedData"]["purchaseVAT"] == [23.0]
        assert response.body["extractedData"]["confidence"] == 0.8
        assert len(store.patches) == 1

    @pytest.mark.asyncio
    async def test_force_reprocess(self, store, user, emitter):
        engine = StubEngine()
        processor = make_processor(store, [engine], emitter)

        await processor.process(request(), user, CONTEXT)
        response = await processor.process(request(force_reprocess=True), user, CONTEXT)

        assert engine.calls == 2
        assert response.body["processingInfo"]["processingType"] == "AI_ENHANCED"

    @pytest.mark.asyncio
    async def test_cached_without_amounts(self, user, emitter):
        store = FakeDocumentStore(make_document(is_scanned=True, scan_result="Scanned, nothing found"))
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.body["extractedData"] is None
        assert response.body["message"] == "Document already processed"


class TestDateFallback:
    @pytest.mark.asyncio
    async def test_missing_date_uses_today(self, store, user, emitter):
        result = make_engine_result(extracted_data=make_extraction_result(invoice_date=None))
        processor = make_processor(store, [StubEngine(result=result)], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        doc = store.documents["doc-1"]
        assert doc.date_extraction_confidence == 0.5
        assert doc.extracted_date.date() == date.today()
        assert doc.extracted_year is None
        assert store.folders == set()

    @pytest.mark.asyncio
    async def test_implausible_year_is_not_found(self, store, user, emitter):
        result = make_engine_result(extracted_data=make_extraction_result(invoice_date="15/01/1850"))
        processor = make_processor(store, [StubEngine(result=result)], emitter)

        await processor.process(request(), user, CONTEXT)

        assert store.documents["doc-1"].date_extraction_confidence == 0.5
        assert store.folders == set()


class TestBestEffortSideEffects:
    @pytest.mark.asyncio
    async def test_folder_failure_keeps_date(self, store, user, emitter):
        store.fail_folder = True
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        doc = store.documents["doc-1"]
        assert doc.extracted_date == datetime(2025, 1, 15)
        assert doc.extracted_year is None
        assert emitter.named("best_effort_failed")[0].fields["name"] == "folder_upsert"

    @pytest.mark.asyncio
    async def test_audit_failure_is_ignored(self, store, user, emitter):
        store.fail_audit = True
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        assert emitter.named("best_effort_failed")[0].fields["name"] == "audit_log"

    @pytest.mark.asyncio
    async def test_foreign_key_retry_drops_folder_link(self, store, user, emitter):
        store.reject_folder_link = True
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        assert [p.links_folder for p in store.patches] == [True, False]
        doc = store.documents["doc-1"]
        assert doc.extracted_year is None
        assert doc.extracted_date == datetime(2025, 1, 15)


class TestEngineFallback:
    @pytest.mark.asyncio
    async def test_legacy_takes_over(self, store, user, emitter):
        enhanced = StubEngine(error=EngineUnavailableError("AI processing is disabled"))
        processor = make_processor(store, [enhanced, LegacyEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 200
        info = response.body["processingInfo"]
        assert info["engine"] == "legacy"
        assert info["processingType"] == "LEGACY"
        assert info["taxComplianceStatus"] == "WARNING"
        assert info["invoiceTotal"] == 123.0
        assert info["totalProvenance"] == "explicit"
        fallback = emitter.named("engine_fallback")[0].fields
        assert fallback["failed_engine"] == "enhanced"
        assert fallback["error_type"] == "EngineUnavailableError"

    @pytest.mark.asyncio
    async def test_all_engines_fail(self, store, user, emitter):
        engines = [
            StubEngine(error=EngineUnavailableError("provider down")),
            StubEngine(name="legacy", error=RuntimeError("regex crashed")),
        ]
        processor = make_processor(store, engines, emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 500
        assert response.body["errorCode"] == "AI_SERVICE_ERROR"
        assert response.body["recoveryInstructions"]["retryDelay"] == 5000
        assert response.body["technicalDetails"]["errors"] == [
            "enhanced: provider down",
            "legacy: regex crashed",
        ]
        assert len(store.patches) == 1
        assert store.documents["doc-1"].scan_result.startswith("PROCESSING FAILED: regex crashed")

    def test_engines_required(self, store, emitter):
        with pytest.raises(ValueError):
            make_processor(store, [], emitter)


class TestLogicalFailure:
    @pytest.mark.asyncio
    async def test_encrypted_pdf(self, store, user, emitter):
        result = make_engine_result(success=False, error="PDF is encrypted or password-protected")
        processor = make_processor(store, [StubEngine(result=result)], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 422
        body = response.body
        assert body["errorCode"] == "PDF_ENCRYPTED"
        assert body["technicalDetails"]["originalError"] == "PDF is encrypted or password-protected"
        assert body["extractedData"]["purchaseVAT"] == []
        doc = store.documents["doc-1"]
        assert doc.scan_result.startswith("PROCESSING FAILED: PDF is encrypted")
        assert doc.is_scanned is True
        assert emitter.named("document_failed")[0].fields["status"] == 422

    @pytest.mark.asyncio
    async def test_image_without_ai(self, user, emitter):
        store = FakeDocumentStore(make_document(mime_type="image/png"))
        processor = make_processor(store, [LegacyEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 422
        assert response.body["errorCode"] == "AI_SERVICE_UNAVAILABLE"


class TestRequestErrors:
    @pytest.mark.asyncio
    async def test_malformed_json(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process_raw(b"{bad", user, CONTEXT)

        assert response.status_code == 400
        assert response.body["errorCode"] == "INVALID_JSON"
        assert response.body["error"] == "Invalid JSON in request body"
        assert len(response.body["suggestions"]) == 2
        assert store.find_calls == 0

    @pytest.mark.asyncio
    async def test_non_object_body(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        response = await processor.process_raw(b"[1, 2]", user)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_document_id(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        response = await processor.process_raw(b'{"documentId": ""}', user)
        assert response.status_code == 400
        assert response.body["error"] == "Document ID is required"

    @pytest.mark.asyncio
    async def test_raw_body_success(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        response = await processor.process_raw(b'{"documentId": "doc-1"}', user, CONTEXT)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_not_owned(self, store, emitter):
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), AuthUser(id="user-2"), CONTEXT)

        assert response.status_code == 404
        assert response.body["errorCode"] == "DOCUMENT_ACCESS_ERROR"
        assert response.body["technicalDetails"]["userContext"] == "authenticated"
        assert store.patches == []

    @pytest.mark.asyncio
    async def test_unknown_document(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)
        response = await processor.process(request(document_id="missing"), user, CONTEXT)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_base64(self, user, emitter):
        store = FakeDocumentStore(make_document(file_data="not base64!!"))
        engine = StubEngine()
        processor = make_processor(store, [engine], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 400
        assert response.body["errorCode"] == "INVALID_FILE_DATA"
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_missing_file_data(self, user, emitter):
        store = FakeDocumentStore(make_document(file_data=None))
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 400
        assert response.body["error"] == "Document file data not available"


class TestUnexpectedErrors:
    @pytest.mark.asyncio
    async def test_document_vanishes(self, store, user, emitter):
        store.lose_document = True
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 500
        assert response.body["errorCode"] == "DOCUMENT_UPDATE_ERROR"
        assert response.body["recoveryInstructions"]["canRetry"] is True

    @pytest.mark.asyncio
    async def test_database_error(self, store, user, emitter):
        store.fail_update = RuntimeError("database connection refused")
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 500
        assert response.body["errorCode"] == "DATABASE_ERROR"
        assert response.body["recoveryInstructions"]["retryDelay"] == 30000
        assert "debugInfo" not in response.body
        assert emitter.named("best_effort_failed")[0].fields["name"] == "mark_failed"

    @pytest.mark.asyncio
    async def test_foreign_key_fallback_also_fails(self, store, user, emitter):
        store.fail_update = ForeignKeyConstraintError("fk_documents_folder")
        processor = make_processor(store, [StubEngine()], emitter)

        response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 500
        assert response.body["errorCode"] == "DOCUMENT_UPDATE_ERROR"
        assert "Fallback also failed" in response.body["error"]

    @pytest.mark.asyncio
    async def test_post_extraction_failure(self, store, user, emitter):
        processor = make_processor(store, [StubEngine()], emitter)

        with patch("payvat.pipeline.resolve_total", side_effect=RuntimeError("bad total")):
            response = await processor.process(request(), user, CONTEXT)

        assert response.status_code == 500
        assert response.body["errorCode"] == "PROCESSING_EXCEPTION"
        assert len(store.patches) == 1
        assert store.documents["doc-1"].scan_result.startswith("PROCESSING FAILED: bad total")

    @pytest.mark.asyncio
    async def test_development_details(self, store, user, emitter):
        store.fail_update = RuntimeError("database connection refused")
        processor = make_processor(store, [StubEngine()], emitter, environment="development")

        response = await processor.process(request(), user, CONTEXT)

        assert response.body["debugInfo"]["errorType"] == "RuntimeError"
        assert "stack" in response.body["technicalDetails"]


class TestStatusMarker:
    def test_cached_amounts_ignore_status_blob(self):
        scan = "Legacy: Extracted 2 VAT amount(s): €23.00, €1,200.50 (70% confidence)\n\n" + status_marker(
            {"status": "completed", "error": "€5.00"},
        )
        assert cached_amounts(scan) == [23.0, 1200.5]

    def test_cached_amounts_none(self):
        assert cached_amounts(None) == []
