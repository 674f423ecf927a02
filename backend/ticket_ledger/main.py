import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticket_ledger.api.v1.api import router as api_router
from ticket_ledger.config import settings

app = FastAPI(title="Ticket Ledger API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check route
@app.get("/health")
def health_check():
    return {"status": "ok"}


# Include v1 routers
app.include_router(api_router, prefix="/api/v1")


def run() -> None:
    """Serve the API with uvicorn using API_HOST / API_PORT."""
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
