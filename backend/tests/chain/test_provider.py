"""
test_provider.py - JSON-RPC transport and retry policy.

Uses httpx.MockTransport; no network.
"""

import json

import httpx
import pytest

from ticket_ledger.chain.provider import ChainProvider
from ticket_ledger.errors import ProviderUnavailable, RangeTooLarge, SyncTimeout


def _provider(handler, max_retries=3):
    sleeps = []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = ChainProvider(
        "http://node.test",
        max_retries=max_retries,
        backoff_min=0.5,
        backoff_max=2.0,
        http_client=client,
        sleep=sleeps.append,
    )
    return provider, sleeps


def _result(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


class TestBlockNumber:

    def test_parses_hex_head(self):
        provider, _ = _provider(lambda request: _result(request, "0x1b4"))
        assert provider.block_number() == 436

    def test_sends_json_rpc_envelope(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _result(request, "0x1")

        provider, _ = _provider(handler)
        provider.block_number()
        assert seen[0]["jsonrpc"] == "2.0"
        assert seen[0]["method"] == "eth_blockNumber"
        assert seen[0]["params"] == []


class TestRetries:

    def test_server_error_retried_then_succeeds(self):
        attempts = {"n": 0}

        def handler(request):
            attempts["n"] += 1
            if attempts["n"] < 3:
                return httpx.Response(503)
            return _result(request, "0x10")

        provider, sleeps = _provider(handler)
        assert provider.block_number() == 16
        assert attempts["n"] == 3
        # Exponential backoff, capped
        assert sleeps == [0.5, 1.0]

    def test_rate_limit_retried(self):
        attempts = {"n": 0}

        def handler(request):
            attempts["n"] += 1
            if attempts["n"] == 1:
                return httpx.Response(429)
            return _result(request, "0x2")

        provider, _ = _provider(handler)
        assert provider.block_number() == 2

    def test_exhausted_retries_raise_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider, sleeps = _provider(handler, max_retries=4)
        with pytest.raises(ProviderUnavailable) as exc_info:
            provider.block_number()
        assert exc_info.value.attempts == 4
        assert exc_info.value.method == "eth_blockNumber"
        assert len(sleeps) == 3

    def test_client_error_not_retried(self):
        attempts = {"n": 0}

        def handler(request):
            attempts["n"] += 1
            return httpx.Response(401)

        provider, _ = _provider(handler)
        with pytest.raises(ProviderUnavailable):
            provider.block_number()
        assert attempts["n"] == 1

    def test_rpc_error_is_transient(self):
        attempts = {"n": 0}

        def handler(request):
            attempts["n"] += 1
            body = json.loads(request.content)
            if attempts["n"] == 1:
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "header not found"}},
                )
            return _result(request, "0x5")

        provider, _ = _provider(handler)
        assert provider.block_number() == 5

    def test_deadline_checked_before_backoff_sleep(self):
        calls = []

        def check_deadline():
            calls.append(len(sleeps))
            if len(calls) == 2:
                raise SyncTimeout(0)

        provider, sleeps = _provider(lambda request: httpx.Response(503), max_retries=5)

        with pytest.raises(SyncTimeout):
            provider.get_logs(1, 10, check_deadline=check_deadline)

        # Checked before each sleep; the second check stops the retries
        assert calls == [0, 1]
        assert sleeps == [0.5]


class TestGetLogs:

    def test_filter_encodes_hex_range_and_address(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _result(request, [])

        provider, _ = _provider(handler)
        assert provider.get_logs(10, 20, address="0xabc", topics=["0xdead"]) == []
        flt = seen[0]["params"][0]
        assert flt == {"fromBlock": "0xa", "toBlock": "0x14", "address": "0xabc", "topics": ["0xdead"]}

    def test_limit_exceeded_raises_range_too_large(self):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": -32005, "message": "query returned more than 10000 results"},
                },
            )

        provider, sleeps = _provider(handler)
        with pytest.raises(RangeTooLarge) as exc_info:
            provider.get_logs(100, 5000)
        assert (exc_info.value.from_block, exc_info.value.to_block) == (100, 5000)
        assert sleeps == []
