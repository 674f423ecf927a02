"""
engine.py - Reconciliation Engine.

Applies confirmed chain events to the ticket ledger and advances the sync
cursor.

CRITICAL INVARIANTS:
1. Events are applied in ascending (block_number, log_index) order
2. An event at or behind a record's last applied position is skipped
   (idempotence under redelivery and re-fetch)
3. Every record write is a conditional update on the position read
4. The cursor advances only after a whole sub-batch is applied, by
   compare-and-swap, and never backwards
5. Only one sync() runs per engine at a time

FAILURE SEMANTICS:
- ProviderUnavailable / RangeTooLarge -> sync aborted, cursor unchanged for
  the failing sub-batch, safe to retry
- DataInconsistency -> reported, event skipped, sync continues
- StoreConflict on a record -> re-read and retry, bounded, then reported
- StoreConflict on the cursor -> another writer advanced it; sync aborted
- Deadline exceeded -> SyncTimeout, interrupted sub-batch not confirmed.
  Checked between events, between sub-batches, and inside the fetch before
  each provider call and backoff sleep
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from ticket_ledger.chain.events import ChainEvent
from ticket_ledger.chain.reader import ChainEventReader
from ticket_ledger.errors import (
    DataInconsistency,
    InconsistencyCode,
    StoreConflict,
    SyncInProgress,
    SyncTimeout,
    TicketNotFound,
    conflict_retries_exhausted,
    duplicate_mint,
    unknown_ticket,
)
from ticket_ledger.ledger.store import TicketLedgerStore, TicketRecord
from ticket_ledger.models import EventKind, TicketStatus
from ticket_ledger.reconciliation.reporting import InconsistencyReporter

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


@dataclass
class SyncResult:
    """Statistics for one sync() call."""

    start_block: int
    confirmed_block: int
    target_block: int
    applied: int = 0
    skipped: int = 0
    inconsistencies: int = 0
    batches: int = 0


class ReconciliationEngine:
    def __init__(
        self,
        reader: ChainEventReader,
        store: TicketLedgerStore,
        reporter: InconsistencyReporter,
        cursor_name: str = "tickets",
        start_block: int = 0,
        confirmation_depth: int = 12,
        batch_blocks: int = 2000,
        max_conflict_retries: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reader = reader
        self.store = store
        self.reporter = reporter
        self.cursor_name = cursor_name
        self.start_block = start_block
        self.confirmation_depth = confirmation_depth
        self.batch_blocks = batch_blocks
        self.max_conflict_retries = max_conflict_retries
        self._clock = clock
        self._run_lock = threading.Lock()
        self.last_result: SyncResult | None = None

    def confirmed_block(self) -> int:
        """
        Current cursor, creating it on first run.

        The cursor starts one block before start_block so events in the
        start block itself are reconciled.
        """
        cursor = self.store.get_cursor(self.cursor_name)
        if cursor is None:
            cursor = self.store.init_cursor(self.cursor_name, self.start_block - 1)
        return cursor.last_confirmed_block

    def sync(self, timeout: float | None = None) -> int:
        """
        Reconcile every confirmed block past the cursor.

        Args:
            timeout: Seconds allowed for this call, None for no deadline.

        Returns:
            The new last confirmed block.

        Raises:
            SyncInProgress: Another sync() is running on this engine.
            ProviderUnavailable: Chain provider retries exhausted.
            RangeTooLarge: Provider cannot serve a single block's logs.
            StoreConflict: Another writer moved the cursor.
            SyncTimeout: Deadline exceeded.
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncInProgress(f"sync already running for cursor '{self.cursor_name}'")
        try:
            return self._sync(timeout)
        finally:
            self._run_lock.release()

    def _sync(self, timeout: float | None) -> int:
        deadline = self._clock() + timeout if timeout is not None else None
        confirmed = self.confirmed_block()
        target = self.reader.head() - self.confirmation_depth

        if target <= confirmed:
            logger.debug("Cursor '%s' at %d, target %d: nothing to do", self.cursor_name, confirmed, target)
            return confirmed

        result = SyncResult(start_block=confirmed, confirmed_block=confirmed, target_block=target)
        self.last_result = result

        while confirmed < target:
            self._check_deadline(deadline, confirmed)
            lo = confirmed + 1
            hi = min(confirmed + self.batch_blocks, target)

            check = self._deadline_check(deadline, confirmed)
            events = self.reader.fetch_events(lo, hi, check_deadline=check)
            self._apply_batch(events, result, deadline, confirmed)

            self.store.advance_cursor(self.cursor_name, confirmed, hi)
            confirmed = hi
            result.confirmed_block = hi
            result.batches += 1

        logger.info(
            "Sync '%s' %d -> %d: %d applied, %d skipped, %d inconsistencies (%d batches)",
            self.cursor_name,
            result.start_block,
            result.confirmed_block,
            result.applied,
            result.skipped,
            result.inconsistencies,
            result.batches,
        )
        return confirmed

    def _apply_batch(
        self,
        events: list[ChainEvent],
        result: SyncResult,
        deadline: float | None,
        confirmed: int,
    ) -> None:
        # (event, already_requeued)
        queue = deque((event, False) for event in events)
        while queue:
            self._check_deadline(deadline, confirmed)
            event, requeued = queue.popleft()
            try:
                outcome = self._apply_with_retry(event)
            except DataInconsistency as e:
                if e.report.code == InconsistencyCode.UNKNOWN_TICKET and not requeued:
                    # The mint may sit later in this batch at a sub-range boundary
                    logger.debug("Deferring %s for unknown ticket %s", event.kind.value, event.ticket_id)
                    queue.append((event, True))
                    continue
                self.reporter.report(e.report)
                result.inconsistencies += 1
                continue

            if outcome == ApplyOutcome.APPLIED:
                result.applied += 1
            else:
                result.skipped += 1

    def _check_deadline(self, deadline: float | None, confirmed: int) -> None:
        if deadline is not None and self._clock() > deadline:
            logger.warning("Sync '%s' deadline exceeded at block %d", self.cursor_name, confirmed)
            raise SyncTimeout(confirmed)

    def _deadline_check(self, deadline: float | None, confirmed: int) -> Callable[[], None] | None:
        """Callable for the reader: raises SyncTimeout once the deadline has passed."""
        if deadline is None:
            return None
        return lambda: self._check_deadline(deadline, confirmed)

    def _apply_with_retry(self, event: ChainEvent) -> ApplyOutcome:
        attempts = 0
        while attempts <= self.max_conflict_retries:
            attempts += 1
            try:
                return self.apply_event(event)
            except StoreConflict as e:
                logger.info(
                    "Conflict applying %s to ticket %s (attempt %d): %s",
                    event.kind.value,
                    event.ticket_id,
                    attempts,
                    e,
                )
        raise DataInconsistency(conflict_retries_exhausted(event, attempts))

    def apply_event(self, event: ChainEvent) -> ApplyOutcome:
        """
        Apply one event with a conditional write.

        Raises:
            DataInconsistency: DUPLICATE_MINT or UNKNOWN_TICKET.
            StoreConflict: The record changed between read and write.
        """
        try:
            record = self.store.get(event.ticket_id)
        except TicketNotFound:
            record = None

        new_record = self._transition(record, event)
        if new_record is None:
            return ApplyOutcome.SKIPPED

        self.store.conditional_update(
            event.ticket_id,
            record.position if record is not None else None,
            new_record,
        )
        return ApplyOutcome.APPLIED

    @staticmethod
    def _transition(record: TicketRecord | None, event: ChainEvent) -> TicketRecord | None:
        """Next record state, or None if the event is already reflected."""
        if record is not None and event.position <= record.position:
            return None

        position = {
            "last_applied_block": event.block_number,
            "last_applied_log_index": event.log_index,
            "last_tx_hash": event.tx_hash,
        }

        if event.kind == EventKind.MINT:
            if record is None:
                return TicketRecord(
                    ticket_id=event.ticket_id,
                    owner_address=event.to_address,
                    status=TicketStatus.ACTIVE,
                    minted_block=event.block_number,
                    **position,
                )
            if record.status == TicketStatus.ACTIVE:
                raise DataInconsistency(duplicate_mint(event, record.owner_address))
            # Burned then minted again under the same id
            return replace(
                record,
                owner_address=event.to_address,
                status=TicketStatus.ACTIVE,
                minted_block=event.block_number,
                **position,
            )

        if record is None:
            raise DataInconsistency(unknown_ticket(event))

        if event.kind == EventKind.TRANSFER:
            return replace(record, owner_address=event.to_address, **position)

        # REDEEM: the burner is the last holder; already-redeemed only moves position
        return replace(
            record,
            owner_address=event.from_address or record.owner_address,
            status=TicketStatus.REDEEMED,
            **position,
        )
