"""
reporting.py - Operator channel for data inconsistencies.

Each report is persisted to ledger_inconsistencies, logged, and (when Redis
is configured) appended to the operator stream. Reporting never raises:
an inconsistency must not stop the reconciliation loop.

Reports are idempotent per (code, event identity). A redelivered event
(retried sub-batch, re-fetched range) is neither logged at WARNING nor
streamed a second time.

Called from the engine thread and from the reader's fetch threads.
"""

import json
import logging
import threading
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ticket_ledger.core.redis import INCONSISTENCY_STREAM_NAME
from ticket_ledger.errors import InconsistencyReport
from ticket_ledger.ledger.store import TicketLedgerStore

logger = logging.getLogger(__name__)


class InconsistencyReporter:
    def __init__(self, store: TicketLedgerStore, redis_client: Any = None):
        self.store = store
        self.redis = redis_client
        self.reported_count = 0
        self._lock = threading.Lock()

    def report(self, report: InconsistencyReport) -> bool:
        """
        Returns:
            False if the same event was already reported, True otherwise.
        """
        try:
            if self.store.record_inconsistency(report) is None:
                return False
        except SQLAlchemyError:
            # Still surfaced through the log and the stream
            logger.error("Failed to persist inconsistency report", exc_info=True)

        with self._lock:
            self.reported_count += 1

        logger.warning(
            "Ledger inconsistency %s: %s (ticket=%s block=%s log=%s tx=%s)",
            report.code.value,
            report.message,
            report.ticket_id,
            report.block_number,
            report.log_index,
            report.tx_hash,
        )

        if self.redis is not None:
            fields = {
                k: json.dumps(v) if isinstance(v, dict) else str(v)
                for k, v in report.to_dict().items()
                if v is not None
            }
            try:
                self.redis.xadd(INCONSISTENCY_STREAM_NAME, fields)
            except Exception:
                # Redis is a secondary channel; the DB row is authoritative
                logger.warning(
                    "Failed to publish inconsistency to '%s'",
                    INCONSISTENCY_STREAM_NAME,
                    exc_info=True,
                )
        return True
