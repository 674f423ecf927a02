"""Test configuration and fixtures."""

import os
import tempfile

import pytest

# Point settings at a throwaway SQLite file BEFORE ticket_ledger.config is imported.
_db_dir = tempfile.mkdtemp(prefix="ticket-ledger-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'ledger.db')}"
os.environ["REDIS_URL"] = ""
os.environ["TICKET_CONTRACT_ADDRESS"] = "0x" + "c" * 40

from sqlalchemy import delete

from ticket_ledger.database import Base, engine
import ticket_ledger.models  # noqa: F401  (registers tables)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database tables before tests."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    """Empty every table after each test."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


@pytest.fixture
def store():
    from ticket_ledger.ledger.store import TicketLedgerStore

    return TicketLedgerStore()


@pytest.fixture
def provider():
    from tests.fakes import FakeChainProvider

    return FakeChainProvider(head=0)
