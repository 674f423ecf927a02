from fastapi import APIRouter
from ticket_ledger.api.v1.endpoints import sync, tickets

# Create the main API router
router = APIRouter()

router.include_router(tickets.router, tags=["tickets"])
router.include_router(sync.router, prefix="/sync", tags=["sync"])
