"""Test telemetry emitters."""
from payvat.telemetry import EventEmitter, RecordingEmitter, StructlogEmitter


class ExplodingEmitter(EventEmitter):
    def _emit(self, event):
        raise RuntimeError("sink down")


class TestRecordingEmitter:
    def test_records_in_order(self):
        emitter = RecordingEmitter()
        emitter.emit("llm_usage", model="gpt-4o", input_tokens=10)
        emitter.emit("document_processed", status=200)

        assert emitter.names() == ["llm_usage", "document_processed"]
        assert emitter.named("llm_usage")[0].fields == {"model": "gpt-4o", "input_tokens": 10}
        assert emitter.named("missing") == []


class TestEmitterFailures:
    def test_sink_errors_do_not_propagate(self):
        ExplodingEmitter().emit("document_processed")

    def test_structlog_emitter(self):
        StructlogEmitter().emit("document_processed", document_id="doc-1")

    def test_field_called_name(self):
        emitter = RecordingEmitter()
        emitter.emit("best_effort_failed", name="audit_log", error="disk full")

        [event] = emitter.events
        assert event.name == "best_effort_failed"
        assert event.fields == {"name": "audit_log", "error": "disk full"}

    def test_structlog_emitter_field_called_name(self):
        StructlogEmitter().emit("best_effort_failed", name="folder_upsert", error="down")
