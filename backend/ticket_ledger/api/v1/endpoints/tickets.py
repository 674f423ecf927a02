"""
tickets.py - Ticket query endpoints.

Reads reflect the ledger as of the last completed sync.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ticket_ledger.core.chain import get_chain_provider
from ticket_ledger.config import settings
from ticket_ledger.errors import TicketNotFound
from ticket_ledger.handlers.tickets import TicketQueryHandler
from ticket_ledger.ledger.store import TicketLedgerStore
from ticket_ledger.schemas.ticket import TicketRead

logger = logging.getLogger(__name__)

router = APIRouter()


def get_query_handler() -> TicketQueryHandler:
    return TicketQueryHandler(
        TicketLedgerStore(),
        provider=get_chain_provider(),
        cursor_name=settings.CURSOR_NAME,
        log=logger,
    )


@router.get("/users/{owner_address}/tickets", response_model=list[TicketRead])
def get_tickets_for_user(
    owner_address: str,
    handler: TicketQueryHandler = Depends(get_query_handler),
):
    try:
        records = handler.get_tickets_for_user(owner_address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [TicketRead.model_validate(r) for r in records]


@router.get("/tickets/{ticket_id}", response_model=TicketRead)
def get_ticket(
    ticket_id: str,
    handler: TicketQueryHandler = Depends(get_query_handler),
):
    try:
        record = handler.get_ticket(ticket_id)
    except TicketNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return TicketRead.model_validate(record)
