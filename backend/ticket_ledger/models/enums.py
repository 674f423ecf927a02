from enum import Enum

class TicketStatus(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"

class EventKind(str, Enum):
    MINT = "mint"
    TRANSFER = "transfer"
    REDEEM = "redeem"
