from sqlalchemy import Column, String, BigInteger, DateTime
from sqlalchemy.sql import func

from ticket_ledger.database import Base


class SyncCursor(Base):
    """
    Last chain block fully reconciled into the ledger.

    Keyed by name so one ledger can follow several contracts.
    Advanced only by compare-and-swap, never moves backwards.
    """
    __tablename__ = "sync_cursors"

    name = Column(String(100), primary_key=True)
    last_confirmed_block = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
