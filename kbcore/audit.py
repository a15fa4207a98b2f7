"""Audit trail for merges, reconciliations and ingestion decisions."""

import contextvars
import hashlib
import logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import structlog


class AuditLogger:
    """Structured audit logging for every operation that mutates the graph."""

    SENSITIVE_KEYS = ["password", "api_key", "token", "secret", "credential"]

    def __init__(self, logger_name: str = "kbcore.audit", history_size: int = 1000):
        """Initialize audit logger.

        Args:
            logger_name: Name of the stdlib logger the entries are emitted on
            history_size: Number of recent entries kept in memory
        """
        self._context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
            f"audit_context_{id(self)}", default={}
        )
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self.logger = structlog.wrap_logger(
            logging.getLogger(logger_name),
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                self._add_audit_context,
                self._sanitize_sensitive_data,
                self._remember,
                structlog.stdlib.filter_by_level,
                structlog.processors.JSONRenderer(default=str),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )

    def _add_audit_context(self, logger, method_name, event_dict):
        event_dict["audit_timestamp"] = datetime.now(timezone.utc).isoformat()
        event_dict["audit_version"] = "1.0"

        for key, value in self._context.get().items():
            event_dict.setdefault(key, value)

        return event_dict

    def _sanitize_sensitive_data(self, logger, method_name, event_dict):
        """Mask values whose key names look like credentials."""
        def sanitize_value(key: str, value: Any) -> Any:
            if any(term in key.lower() for term in self.SENSITIVE_KEYS):
                return "***REDACTED***"
            if isinstance(value, dict):
                return {k: sanitize_value(k, v) for k, v in value.items()}
            return value

        for key, value in list(event_dict.items()):
            event_dict[key] = sanitize_value(key, value)

        return event_dict

    def _remember(self, logger, method_name, event_dict):
        self._history.append(dict(event_dict))
        return event_dict

    @contextmanager
    def audit_context(self, **kwargs):
        """Attach fields to every audit entry emitted inside the block.

        Usage:
            with audit_logger.audit_context(operator="alice"):
                await engine.merge_entities(keeper_id, loser_id)
        """
        token = self._context.set({**self._context.get(), **kwargs})
        try:
            yield
        finally:
            self._context.reset(token)

    def log_merge(
        self,
        keeper_id: str,
        keeper_name: str,
        loser_ids: List[str],
        loser_names: List[str],
        rewritten_event_ids: List[str],
        trigger: str,
        external_id: Optional[str] = None,
    ) -> None:
        """Record a committed merge.

        Args:
            keeper_id: Surviving entity
            keeper_name: Name events were rewritten to
            loser_ids: Entities removed by the merge
            loser_names: Names that became aliases of the keeper
            rewritten_event_ids: Events whose text was rewritten
            trigger: "reconciliation" or "operator"
            external_id: Shared external identifier, for reconciliation merges
        """
        digest_source = f"{keeper_id}:{','.join(sorted(loser_ids))}"
        self.logger.info(
            "entity_merge",
            event_type="merge",
            trigger=trigger,
            keeper_id=keeper_id,
            keeper_name=keeper_name,
            loser_ids=loser_ids,
            loser_names=loser_names,
            external_id=external_id,
            rewritten_events=len(rewritten_event_ids),
            rewritten_event_ids=rewritten_event_ids,
            merge_hash=hashlib.sha256(digest_source.encode()).hexdigest()[:16],
        )

    def log_merge_failure(self, keeper_id: str, loser_ids: List[str], step: str, error: str) -> None:
        self.logger.error(
            "entity_merge_failed",
            event_type="merge_failure",
            keeper_id=keeper_id,
            loser_ids=loser_ids,
            step=step,
            error=error,
        )

    def log_reconciliation(self, groups_found: int, entities_removed: int) -> None:
        self.logger.info(
            "reconciliation",
            event_type="reconciliation",
            groups_found=groups_found,
            entities_removed=entities_removed,
        )

    def log_recalculation(self, entities: int, events: int, changed: int) -> None:
        self.logger.info(
            "connection_recalculation",
            event_type="recalculation",
            entities=entities,
            events=events,
            changed_entities=changed,
        )

    def log_ingestion(
        self,
        event_id: str,
        decision: str,
        created_entity_ids: Optional[List[str]] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record what ingestion did with one event.

        Args:
            event_id: Event identifier
            decision: "stored", "duplicate" or "rejected"
            created_entity_ids: Entities created for this event
            reason: Why the event was skipped, if it was
        """
        log_data = {
            "event_type": "ingestion",
            "event_id": event_id,
            "decision": decision,
        }
        if created_entity_ids:
            log_data["created_entity_ids"] = created_entity_ids
        if reason:
            log_data["reason"] = reason

        self.logger.info("event_ingestion", **log_data)

    def get_audit_trail(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Return recent audit entries, optionally filtered by exact field values."""
        entries = list(self._history)
        if not filters:
            return entries
        return [
            entry for entry in entries
            if all(entry.get(key) == value for key, value in filters.items())
        ]
