from fastapi import APIRouter, Depends, Query

from ticket_ledger.api.v1.endpoints.tickets import get_query_handler
from ticket_ledger.handlers.tickets import TicketQueryHandler
from ticket_ledger.ledger.store import TicketLedgerStore
from ticket_ledger.schemas.ticket import InconsistencyRead, SyncStatusRead

router = APIRouter()


def get_store() -> TicketLedgerStore:
    return TicketLedgerStore()


@router.get("/status", response_model=SyncStatusRead)
def sync_status(handler: TicketQueryHandler = Depends(get_query_handler)):
    return SyncStatusRead.model_validate(handler.sync_status())


@router.get("/inconsistencies", response_model=list[InconsistencyRead])
def list_inconsistencies(
    limit: int = Query(100, ge=1, le=1000),
    store: TicketLedgerStore = Depends(get_store),
):
    return [InconsistencyRead.model_validate(r) for r in store.list_inconsistencies(limit)]
