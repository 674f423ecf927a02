from .enums import EventKind, TicketStatus
from .ticket import Ticket
from .sync_cursor import SyncCursor
from .inconsistency import LedgerInconsistency

__all__ = ["Ticket", "SyncCursor", "LedgerInconsistency", "TicketStatus", "EventKind"]
