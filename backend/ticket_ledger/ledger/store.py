"""
store.py - Ticket Ledger Store.

Responsibilities:
- Point reads of ticket records
- Conditional (compare-and-swap) writes keyed on the last applied event position
- Owner listing for the query surface
- Persisted sync cursor, advanced by compare-and-swap
- Append-only inconsistency log

Every write is one statement in its own transaction: a concurrent reader sees
the old record or the new one, never a mix.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, List

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ticket_ledger.database import SessionLocal
from ticket_ledger.errors import InconsistencyReport, StoreConflict, TicketNotFound
from ticket_ledger.models import LedgerInconsistency, SyncCursor, Ticket, TicketStatus

UTC = timezone.utc
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketRecord:
    """Detached, immutable view of a ticket row."""
    ticket_id: str
    owner_address: str
    status: TicketStatus
    last_applied_block: int
    last_applied_log_index: int
    last_tx_hash: str
    minted_block: int
    updated_at: Optional[datetime] = None

    @property
    def position(self) -> tuple[int, int]:
        return (self.last_applied_block, self.last_applied_log_index)

    @classmethod
    def from_row(cls, row: Ticket) -> "TicketRecord":
        return cls(
            ticket_id=row.ticket_id,
            owner_address=row.owner_address,
            status=TicketStatus(row.status),
            last_applied_block=row.last_applied_block,
            last_applied_log_index=row.last_applied_log_index,
            last_tx_hash=row.last_tx_hash,
            minted_block=row.minted_block,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class CursorState:
    name: str
    last_confirmed_block: int
    updated_at: Optional[datetime] = None


class TicketLedgerStore:
    """
    SQLAlchemy-backed ledger.

    Invariants:
    - Ticket rows are NEVER deleted
    - A ticket's (last_applied_block, last_applied_log_index) only increases
    - A cursor's last_confirmed_block only increases
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self.Session = session_factory or SessionLocal

    def ping(self) -> None:
        """Round-trip to the database. Raises the driver error if unreachable."""
        db = self.Session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    # --- Tickets ---

    def get(self, ticket_id: str) -> TicketRecord:
        """
        Raises:
            TicketNotFound: If the ledger has no record for ticket_id.
        """
        db = self.Session()
        try:
            row = db.get(Ticket, ticket_id)
            if row is None:
                raise TicketNotFound(ticket_id)
            return TicketRecord.from_row(row)
        finally:
            db.close()

    def conditional_update(
        self,
        ticket_id: str,
        expected: tuple[int, int] | None,
        new_record: TicketRecord,
    ) -> None:
        """
        Write new_record if the stored record is still at `expected`.

        Parameters:
            ticket_id: Key of the record.
            expected: (block, log_index) the caller read, or None if the caller
                saw no record (insert).
            new_record: Full replacement record.

        Raises:
            StoreConflict: The stored position differs from `expected`, or a
                record appeared since the caller read it.
            ValueError: new_record would move the record position backwards.
        """
        if new_record.ticket_id != ticket_id:
            raise ValueError(f"record ticket_id {new_record.ticket_id} != {ticket_id}")
        if expected is not None and new_record.position <= expected:
            raise ValueError(
                f"position must increase: {expected} -> {new_record.position}"
            )

        now = datetime.now(UTC)
        db = self.Session()
        try:
            if expected is None:
                db.add(
                    Ticket(
                        ticket_id=ticket_id,
                        owner_address=new_record.owner_address,
                        status=new_record.status,
                        last_applied_block=new_record.last_applied_block,
                        last_applied_log_index=new_record.last_applied_log_index,
                        last_tx_hash=new_record.last_tx_hash,
                        minted_block=new_record.minted_block,
                        updated_at=now,
                    )
                )
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise StoreConflict(ticket_id, expected=None, actual="present")
                return

            result = db.execute(
                update(Ticket)
                .where(
                    Ticket.ticket_id == ticket_id,
                    Ticket.last_applied_block == expected[0],
                    Ticket.last_applied_log_index == expected[1],
                )
                .values(
                    owner_address=new_record.owner_address,
                    status=new_record.status,
                    last_applied_block=new_record.last_applied_block,
                    last_applied_log_index=new_record.last_applied_log_index,
                    last_tx_hash=new_record.last_tx_hash,
                    minted_block=new_record.minted_block,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                db.rollback()
                current = db.get(Ticket, ticket_id)
                actual = (
                    (current.last_applied_block, current.last_applied_log_index)
                    if current is not None
                    else None
                )
                raise StoreConflict(ticket_id, expected=expected, actual=actual)
            db.commit()
        finally:
            db.close()

    def list_by_owner(self, owner_address: str) -> List[TicketRecord]:
        """All records owned by owner_address (lower-case hex), ordered by numeric id."""
        db = self.Session()
        try:
            rows = db.scalars(
                select(Ticket)
                .where(Ticket.owner_address == owner_address.lower())
                .order_by(func.length(Ticket.ticket_id), Ticket.ticket_id)
            ).all()
            return [TicketRecord.from_row(r) for r in rows]
        finally:
            db.close()

    # --- Sync cursor ---

    def get_cursor(self, name: str) -> Optional[CursorState]:
        db = self.Session()
        try:
            row = db.get(SyncCursor, name)
            if row is None:
                return None
            return CursorState(
                name=row.name,
                last_confirmed_block=row.last_confirmed_block,
                updated_at=row.updated_at,
            )
        finally:
            db.close()

    def init_cursor(self, name: str, block: int) -> CursorState:
        """
        Create the cursor at `block` unless it already exists.

        Idempotent: returns the stored cursor when another process won the race.
        """
        db = self.Session()
        try:
            db.add(SyncCursor(name=name, last_confirmed_block=block, updated_at=datetime.now(UTC)))
            try:
                db.commit()
                logger.info("Initialized sync cursor '%s' at block %d", name, block)
            except IntegrityError:
                db.rollback()
                logger.debug("Sync cursor '%s' already exists", name)
        finally:
            db.close()

        cursor = self.get_cursor(name)
        if cursor is None:
            raise StoreConflict(f"cursor:{name}", expected=block, actual=None)
        return cursor

    def advance_cursor(self, name: str, expected: int, new_block: int) -> None:
        """
        Move the cursor from `expected` to `new_block`.

        Raises:
            StoreConflict: Stored cursor is no longer at `expected`.
            ValueError: new_block < expected.
        """
        if new_block < expected:
            raise ValueError(f"cursor cannot move backwards: {expected} -> {new_block}")
        db = self.Session()
        try:
            result = db.execute(
                update(SyncCursor)
                .where(SyncCursor.name == name, SyncCursor.last_confirmed_block == expected)
                .values(last_confirmed_block=new_block, updated_at=datetime.now(UTC))
            )
            if result.rowcount != 1:
                db.rollback()
                current = db.get(SyncCursor, name)
                raise StoreConflict(
                    f"cursor:{name}",
                    expected=expected,
                    actual=current.last_confirmed_block if current is not None else None,
                )
            db.commit()
        finally:
            db.close()

    # --- Inconsistencies ---

    def record_inconsistency(self, report: InconsistencyReport) -> Optional[int]:
        """
        Persist a report once per (code, event identity).

        Returns:
            The new row id, or None if this event was already reported.
        """
        db = self.Session()
        try:
            row = LedgerInconsistency(
                code=report.code.value,
                message=report.message,
                ticket_id=report.ticket_id,
                block_number=report.block_number,
                log_index=report.log_index,
                tx_hash=report.tx_hash,
                details_json=json.dumps(report.details) if report.details else None,
                created_at=datetime.now(UTC),
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.debug(
                    "Inconsistency %s for block %s log %s already recorded",
                    report.code.value,
                    report.block_number,
                    report.log_index,
                )
                return None
            return row.id
        finally:
            db.close()

    def list_inconsistencies(self, limit: int = 100) -> List[dict[str, Any]]:
        """Most recent reports first."""
        db = self.Session()
        try:
            rows = db.scalars(
                select(LedgerInconsistency)
                .order_by(LedgerInconsistency.id.desc())
                .limit(limit)
            ).all()
            return [
                {
                    "id": r.id,
                    "code": r.code,
                    "message": r.message,
                    "ticket_id": r.ticket_id,
                    "block_number": r.block_number,
                    "log_index": r.log_index,
                    "tx_hash": r.tx_hash,
                    "details": json.loads(r.details_json) if r.details_json else {},
                    "created_at": r.created_at,
                }
                for r in rows
            ]
        finally:
            db.close()
