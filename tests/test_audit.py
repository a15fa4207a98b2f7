"""Tests for audit and structured logging."""

import json
import logging

from kbcore.audit import AuditLogger
from kbcore.logging_config import (
    StructuredFormatter,
    Timer,
    log_context,
    log_performance,
    setup_logging,
)


class TestAuditLogger:
    """Test the audit trail."""

    def test_merge_entry(self, audit_logger):
        audit_logger.log_merge(
            keeper_id="p-1",
            keeper_name="Robert Smith",
            loser_ids=["p-2"],
            loser_names=["Bobby"],
            rewritten_event_ids=["e-1", "e-2"],
            trigger="operator",
        )

        entry = audit_logger.get_audit_trail()[-1]
        assert entry["event"] == "entity_merge"
        assert entry["event_type"] == "merge"
        assert entry["rewritten_events"] == 2
        assert len(entry["merge_hash"]) == 16
        assert entry["audit_version"] == "1.0"
        assert "timestamp" in entry

    def test_merge_hash_ignores_loser_order(self, audit_logger):
        for loser_ids in (["p-2", "p-3"], ["p-3", "p-2"]):
            audit_logger.log_merge("p-1", "A", loser_ids, [], [], "operator")

        first, second = audit_logger.get_audit_trail({"event_type": "merge"})
        assert first["merge_hash"] == second["merge_hash"]

    def test_context_attached_and_restored(self, audit_logger):
        with audit_logger.audit_context(operator="alice"):
            audit_logger.log_reconciliation(groups_found=1, entities_removed=1)
        audit_logger.log_reconciliation(groups_found=0, entities_removed=0)

        inside, outside = audit_logger.get_audit_trail({"event_type": "reconciliation"})
        assert inside["operator"] == "alice"
        assert "operator" not in outside

    def test_sensitive_values_redacted(self, audit_logger):
        with audit_logger.audit_context(api_token="abc123"):
            audit_logger.log_ingestion("e-1", "stored")

        assert audit_logger.get_audit_trail()[-1]["api_token"] == "***REDACTED***"

    def test_ingestion_reason(self, audit_logger):
        audit_logger.log_ingestion("e-1", "duplicate", reason="duplicate event")

        entry = audit_logger.get_audit_trail({"decision": "duplicate"})[0]
        assert entry["reason"] == "duplicate event"
        assert "created_entity_ids" not in entry

    def test_history_is_bounded(self):
        audit = AuditLogger(logger_name="kbcore.audit.bounded", history_size=2)
        for i in range(3):
            audit.log_recalculation(entities=i, events=0, changed=0)

        assert [e["entities"] for e in audit.get_audit_trail()] == [1, 2]

    def test_entries_emitted_as_json(self, caplog):
        audit = AuditLogger(logger_name="kbcore.audit.emitted")

        with caplog.at_level(logging.INFO, logger="kbcore.audit.emitted"):
            audit.log_merge_failure("p-1", ["p-2"], "commit", "disk full")

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event_type"] == "merge_failure"
        assert payload["step"] == "commit"


class TestStructuredLogging:
    """Test the JSON formatter and helpers."""

    def _record(self, **extra):
        record = logging.LogRecord("kbcore.test", logging.INFO, __file__, 10, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_output(self):
        output = json.loads(StructuredFormatter().format(self._record(entity_id="p-1")))

        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["logger"] == "kbcore.test"
        assert output["entity_id"] == "p-1"

    def test_sensitive_fields_redacted(self):
        output = json.loads(StructuredFormatter().format(self._record(api_key="secret-value")))
        assert output["api_key"] == "[REDACTED]"

    def test_log_context_fields(self):
        with log_context(merge_keeper="p-1"):
            output = json.loads(StructuredFormatter().format(self._record()))
        assert output["merge_keeper"] == "p-1"

        output = json.loads(StructuredFormatter().format(self._record()))
        assert "merge_keeper" not in output

    def test_setup_logging_file(self, tmp_path):
        log_file = tmp_path / "kbcore.log"
        root = logging.getLogger()
        previous_handlers = root.handlers[:]
        previous_level = root.level

        try:
            setup_logging(format="json", level="DEBUG", log_file=str(log_file))
            logging.getLogger("kbcore.test").debug("written", extra={"step": "commit"})
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = previous_handlers
            root.setLevel(previous_level)

        line = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert line["message"] == "written"
        assert line["step"] == "commit"

    def test_log_performance(self, caplog):
        with caplog.at_level(logging.INFO, logger="kbcore.perf"):
            with Timer() as timer:
                pass
            log_performance("kbcore.perf", "recalculation", timer.duration_ms, entities=3)

        record = caplog.records[-1]
        assert "recalculation completed" in record.getMessage()
        assert record.entities == 3
        assert record.duration_ms == timer.duration_ms
