"""
test_events.py - Raw log decoding.
"""

import pytest

from ticket_ledger.chain.events import ZERO_ADDRESS, normalize_address, normalize_log
from ticket_ledger.errors import DataInconsistency, InconsistencyCode
from ticket_ledger.models import EventKind

from tests.fakes import ALICE, BOB, make_log, mint_log, redeem_log


class TestNormalizeLog:

    def test_mint_from_zero_address(self):
        event = normalize_log(mint_log(7, ALICE, block=10, log_index=3))
        assert event.kind == EventKind.MINT
        assert event.ticket_id == "7"
        assert event.from_address is None
        assert event.to_address == ALICE
        assert event.block_number == 10
        assert event.log_index == 3

    def test_transfer_between_holders(self):
        event = normalize_log(make_log(7, ALICE, BOB, block=12))
        assert event.kind == EventKind.TRANSFER
        assert event.from_address == ALICE
        assert event.to_address == BOB

    def test_redeem_is_burn_to_zero_address(self):
        event = normalize_log(redeem_log(7, BOB, block=15))
        assert event.kind == EventKind.REDEEM
        assert event.from_address == BOB
        assert event.to_address == ZERO_ADDRESS

    def test_large_token_id_kept_as_decimal_string(self):
        big = 2**200 + 5
        event = normalize_log(mint_log(big, ALICE, block=1))
        assert event.ticket_id == str(big)

    def test_mixed_case_addresses_lowered(self):
        log = make_log(1, ALICE, BOB, block=2)
        log["topics"] = [t.upper().replace("0X", "0x") for t in log["topics"]]
        log["transactionHash"] = log["transactionHash"].upper().replace("0X", "0x")
        event = normalize_log(log)
        assert event.to_address == BOB
        assert event.tx_hash == event.tx_hash.lower()

    def test_non_transfer_topic_is_undecodable(self):
        log = mint_log(1, ALICE, block=1)
        log["topics"][0] = "0x" + "1" * 64
        with pytest.raises(DataInconsistency) as exc_info:
            normalize_log(log)
        report = exc_info.value.report
        assert report.code == InconsistencyCode.UNDECODABLE_LOG
        assert report.block_number == 1

    def test_missing_token_id_is_undecodable(self):
        log = mint_log(1, ALICE, block=1)
        log["topics"] = log["topics"][:3]
        with pytest.raises(DataInconsistency):
            normalize_log(log)

    def test_position_orders_by_block_then_log_index(self):
        a = normalize_log(mint_log(1, ALICE, block=5, log_index=9))
        b = normalize_log(mint_log(2, ALICE, block=6, log_index=0))
        assert a.position < b.position


class TestNormalizeAddress:

    def test_lowercases(self):
        assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20

    @pytest.mark.parametrize("value", ["", "0x123", "ab" * 21, "0x" + "zz" * 20])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            normalize_address(value)
