"""
test_worker.py - Sync worker tick and startup behavior.

1. Startup refuses invalid configuration and an unreachable store
2. A failed tick never raises and never moves the cursor
3. The Redis lock gates each tick when configured
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from ticket_ledger.config import Settings
from ticket_ledger.errors import (
    ConfigurationError,
    ProviderUnavailable,
    RangeTooLarge,
    StoreConflict,
    SyncInProgress,
    SyncTimeout,
)
from ticket_ledger.worker.main import SyncWorker, build_engine

from tests.fakes import ALICE, CONTRACT, mint_log


def _config(**overrides):
    values = {
        "TICKET_CONTRACT_ADDRESS": CONTRACT,
        "START_BLOCK": 1,
        "CONFIRMATION_DEPTH": 0,
        "SYNC_BATCH_BLOCKS": 50,
        "MAX_BLOCK_RANGE": 10,
        "READER_WORKERS": 2,
        "POLL_INTERVAL": 0.01,
        "SYNC_TIMEOUT": 30.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def config():
    return _config()


@pytest.fixture
def worker(store, provider, config):
    return SyncWorker(build_engine(config, store, provider), store, config)


class TestStartup:

    def test_valid_config_initializes_cursor(self, worker, store):
        worker.check_startup()
        assert store.get_cursor("tickets").last_confirmed_block == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"TICKET_CONTRACT_ADDRESS": None},
            {"START_BLOCK": -1},
            {"CONFIRMATION_DEPTH": -3},
            {"SYNC_BATCH_BLOCKS": 0},
            {"READER_WORKERS": 0},
            {"POLL_INTERVAL": 0},
        ],
    )
    def test_invalid_config_rejected(self, store, provider, overrides):
        config = _config(**overrides)
        worker = SyncWorker(MagicMock(), store, config)
        with pytest.raises(ConfigurationError):
            worker.check_startup()

    def test_unreachable_store_rejected(self, config):
        store = MagicMock()
        store.ping.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
        worker = SyncWorker(MagicMock(), store, config)
        with pytest.raises(ConfigurationError, match="unreachable"):
            worker.check_startup()


class TestTick:

    def test_tick_syncs_to_confirmed_head(self, worker, store, provider):
        provider.add(mint_log(1, ALICE, block=3))
        provider.head = 5

        assert worker.tick() == 5
        assert store.get("1").owner_address == ALICE

    @pytest.mark.parametrize(
        "error",
        [
            ProviderUnavailable("down"),
            RangeTooLarge(4, 4),
            SyncTimeout(0),
            StoreConflict("cursor:tickets", 0, 4),
            SyncInProgress("busy"),
            RuntimeError("boom"),
        ],
    )
    def test_tick_swallows_sync_errors(self, store, config, error):
        engine = MagicMock()
        engine.sync.side_effect = error
        worker = SyncWorker(engine, store, config)

        assert worker.tick() is None
        engine.sync.assert_called_once_with(timeout=config.SYNC_TIMEOUT)

    def test_provider_outage_leaves_cursor(self, worker, store, provider):
        worker.check_startup()
        provider.head = 5
        provider.fail_with = ProviderUnavailable("down")

        assert worker.tick() is None
        assert store.get_cursor("tickets").last_confirmed_block == 0


class TestRedisLock:

    def test_lock_held_elsewhere_skips_tick(self, store, config):
        engine = MagicMock()
        redis_client = MagicMock()
        redis_client.lock.return_value.acquire.return_value = False
        worker = SyncWorker(engine, store, config, redis_client)

        assert worker.tick() is None
        engine.sync.assert_not_called()

    def test_lock_released_after_tick(self, store, config):
        engine = MagicMock()
        engine.sync.return_value = 42
        redis_client = MagicMock()
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True
        worker = SyncWorker(engine, store, config, redis_client)

        assert worker.tick() == 42
        lock.release.assert_called_once()
        name = redis_client.lock.call_args.args[0]
        assert name.endswith(":tickets")
        assert redis_client.lock.call_args.kwargs["blocking"] is False
        # Outlives a timed-out sync still finishing its last provider request
        assert redis_client.lock.call_args.kwargs["timeout"] == (
            2 * config.SYNC_TIMEOUT + config.PROVIDER_TIMEOUT + config.PROVIDER_BACKOFF_MAX
        )

    def test_lock_released_after_failed_tick(self, store, config):
        engine = MagicMock()
        engine.sync.side_effect = ProviderUnavailable("down")
        redis_client = MagicMock()
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True
        worker = SyncWorker(engine, store, config, redis_client)

        assert worker.tick() is None
        lock.release.assert_called_once()


class TestShutdown:

    def test_stop_ends_loop(self, worker, provider):
        provider.head = 0
        original_tick = worker.tick
        ticks = []

        def tick_then_stop():
            ticks.append(original_tick())
            worker.stop()

        worker.tick = tick_then_stop
        with patch("ticket_ledger.worker.main.signal.signal") as mock_signal:
            worker.start()

        assert mock_signal.call_count == 2

        assert ticks == [0]
        assert worker.running is False
