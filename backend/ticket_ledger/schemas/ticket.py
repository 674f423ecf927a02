# ticket_ledger/schemas/ticket.py
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict

from ticket_ledger.models.enums import TicketStatus


class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: str
    owner_address: str
    status: TicketStatus
    last_applied_block: int
    last_applied_log_index: int
    last_tx_hash: str
    minted_block: int
    updated_at: Optional[datetime] = None


class SyncStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    cursor_name: str
    last_confirmed_block: Optional[int] = None
    chain_head: Optional[int] = None
    lag_blocks: Optional[int] = None


class InconsistencyRead(BaseModel):
    id: int
    code: str
    message: str
    ticket_id: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    tx_hash: Optional[str] = None
    details: dict[str, Any] = {}
    created_at: datetime
