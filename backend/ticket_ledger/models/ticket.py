"""
ticket.py - Ownership record per ticket.

GUARANTEES:
1. Rows are NEVER deleted (redemption is a status transition)
2. (last_applied_block, last_applied_log_index) only moves forward
3. Mutated only by the reconciliation engine via conditional updates
"""

from sqlalchemy import Column, String, BigInteger, Integer, DateTime, Enum as SAEnum, Index
from sqlalchemy.sql import func

from ticket_ledger.database import Base
from ticket_ledger.models.enums import TicketStatus


class Ticket(Base):
    __tablename__ = "tickets"

    # uint256 token id, decimal string
    ticket_id = Column(String(78), primary_key=True)
    owner_address = Column(String(42), nullable=False, index=True)
    status = Column(
        SAEnum(TicketStatus, name="ticket_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )

    # Position of the last applied chain event (optimistic concurrency token)
    last_applied_block = Column(BigInteger, nullable=False)
    last_applied_log_index = Column(Integer, nullable=False)
    last_tx_hash = Column(String(66), nullable=False)

    minted_block = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_tickets_owner_status", "owner_address", "status"),
    )
