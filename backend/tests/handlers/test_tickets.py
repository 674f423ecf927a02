"""
test_tickets.py - GetTicketsForUser and sync status.
"""

from unittest.mock import MagicMock

import pytest

from ticket_ledger.errors import ProviderUnavailable, TicketNotFound
from ticket_ledger.handlers.tickets import TicketQueryHandler
from ticket_ledger.models import TicketStatus

from tests.fakes import ALICE, BOB, build_engine, make_log, mint_log, redeem_log


@pytest.fixture
def synced(store, provider):
    provider.add(
        mint_log(1, ALICE, block=1),
        mint_log(2, ALICE, block=2),
        mint_log(3, ALICE, block=3),
        make_log(2, ALICE, BOB, block=4),
        redeem_log(3, ALICE, block=5),
    )
    provider.head = 8
    build_engine(store, provider).sync()
    return store


class TestGetTicketsForUser:

    def test_returns_active_and_redeemed(self, synced):
        handler = TicketQueryHandler(synced)
        tickets = handler.get_tickets_for_user(ALICE)
        assert [(t.ticket_id, t.status) for t in tickets] == [
            ("1", TicketStatus.ACTIVE),
            ("3", TicketStatus.REDEEMED),
        ]

    def test_address_case_is_ignored(self, synced):
        handler = TicketQueryHandler(synced)
        upper = "0x" + BOB[2:].upper()
        assert [t.ticket_id for t in handler.get_tickets_for_user(upper)] == ["2"]

    def test_unknown_owner_gets_empty_list(self, synced):
        handler = TicketQueryHandler(synced)
        assert handler.get_tickets_for_user("0x" + "1" * 40) == []

    @pytest.mark.parametrize("bad", ["", "0x123", "not-an-address", "0x" + "g" * 40])
    def test_malformed_address_rejected(self, store, bad):
        with pytest.raises(ValueError):
            TicketQueryHandler(store).get_tickets_for_user(bad)

    def test_serves_ledger_while_provider_down(self, synced, provider):
        provider.fail_with = ProviderUnavailable("down")
        handler = TicketQueryHandler(synced, provider=provider)
        assert [t.ticket_id for t in handler.get_tickets_for_user(BOB)] == ["2"]

    def test_get_ticket(self, synced):
        handler = TicketQueryHandler(synced)
        assert handler.get_ticket("2").owner_address == BOB
        with pytest.raises(TicketNotFound):
            handler.get_ticket("99")


class TestSyncStatus:

    def test_reports_lag(self, synced, provider):
        provider.head = 20
        status = TicketQueryHandler(synced, provider=provider).sync_status()
        assert status.last_confirmed_block == 8
        assert status.chain_head == 20
        assert status.lag_blocks == 12

    def test_no_cursor_yet(self, store):
        status = TicketQueryHandler(store).sync_status()
        assert status.last_confirmed_block is None
        assert status.chain_head is None
        assert status.lag_blocks is None

    def test_provider_failure_logged_not_raised(self, synced, provider):
        provider.fail_with = ProviderUnavailable("down")
        log = MagicMock()
        status = TicketQueryHandler(synced, provider=provider, log=log).sync_status()
        assert status.last_confirmed_block == 8
        assert status.chain_head is None
        log.warning.assert_called_once()
