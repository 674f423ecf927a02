"""
inconsistency.py - Operator-facing record of events the ledger refused.

Append-only. Written by the reconciliation engine, read by operators.
One row per (code, event identity): redelivered events do not add rows.
"""

from sqlalchemy import Column, Integer, String, BigInteger, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from ticket_ledger.database import Base


class LedgerInconsistency(Base):
    __tablename__ = "ledger_inconsistencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, index=True)
    message = Column(Text, nullable=False)

    # Offending event identity (all nullable: undecodable logs may lack them)
    ticket_id = Column(String(78), nullable=True, index=True)
    block_number = Column(BigInteger, nullable=True)
    log_index = Column(Integer, nullable=True)
    tx_hash = Column(String(66), nullable=True)

    details_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        UniqueConstraint(
            "code", "block_number", "log_index", "tx_hash",
            name="uq_ledger_inconsistencies_event",
        ),
    )
