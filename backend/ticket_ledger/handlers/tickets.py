"""
tickets.py - Read-only ticket queries.

Serves the ledger as of the last completed sync. Never mutates, and never
fails because the reconciliation loop or the chain provider is unhealthy.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ticket_ledger.chain.events import normalize_address
from ticket_ledger.chain.provider import ChainProvider
from ticket_ledger.errors import ProviderUnavailable, RangeTooLarge
from ticket_ledger.ledger.store import TicketLedgerStore, TicketRecord


@dataclass(frozen=True)
class SyncStatus:
    cursor_name: str
    last_confirmed_block: Optional[int]
    chain_head: Optional[int]
    lag_blocks: Optional[int]


class TicketQueryHandler:
    def __init__(
        self,
        store: TicketLedgerStore,
        provider: ChainProvider | None = None,
        cursor_name: str = "tickets",
        log: logging.Logger | None = None,
    ):
        self.store = store
        self.provider = provider
        self.cursor_name = cursor_name
        self.log = log or logging.getLogger(__name__)

    def get_tickets_for_user(self, owner_address: str) -> List[TicketRecord]:
        """
        Tickets currently owned by owner_address, active and redeemed.

        Raises:
            ValueError: owner_address is not a 20-byte hex address.
        """
        return self.store.list_by_owner(normalize_address(owner_address))

    def get_ticket(self, ticket_id: str) -> TicketRecord:
        """Raises TicketNotFound for ids the ledger has never seen."""
        return self.store.get(ticket_id)

    def sync_status(self) -> SyncStatus:
        cursor = self.store.get_cursor(self.cursor_name)
        confirmed = cursor.last_confirmed_block if cursor is not None else None

        head = None
        if self.provider is not None:
            try:
                head = self.provider.block_number()
            except (ProviderUnavailable, RangeTooLarge) as e:
                self.log.warning("Chain head unavailable for sync status: %s", e)

        lag = head - confirmed if head is not None and confirmed is not None else None
        return SyncStatus(
            cursor_name=self.cursor_name,
            last_confirmed_block=confirmed,
            chain_head=head,
            lag_blocks=lag,
        )
