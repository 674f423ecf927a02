"""
main.py - Background reconciliation worker.

Runs ReconciliationEngine.sync() every POLL_INTERVAL seconds.

GUARANTEES:
- Refuses to start on invalid configuration or an unreachable store
- One sync in flight per cursor: in-process run-lock, plus a Redis lock
  across processes when REDIS_URL is set
- Provider outages, timeouts and cursor races end the current tick only;
  the next tick resumes from the persisted cursor
- Graceful shutdown on SIGTERM/SIGINT (finishes the current tick)
"""

import logging
import signal
import threading
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ticket_ledger.chain.reader import ChainEventReader
from ticket_ledger.config import Settings, settings
from ticket_ledger.core.chain import get_chain_provider
from ticket_ledger.core.redis import get_redis_client, sync_lock
from ticket_ledger.errors import (
    ConfigurationError,
    ProviderUnavailable,
    RangeTooLarge,
    StoreConflict,
    SyncInProgress,
    SyncTimeout,
)
from ticket_ledger.ledger.store import TicketLedgerStore
from ticket_ledger.reconciliation import InconsistencyReporter, ReconciliationEngine

logger = logging.getLogger(__name__)


def build_engine(
    config: Settings,
    store: TicketLedgerStore,
    provider,
    redis_client: Any = None,
) -> ReconciliationEngine:
    """Wire reader, reporter and engine from settings."""
    reporter = InconsistencyReporter(store, redis_client=redis_client)
    reader = ChainEventReader(
        provider,
        config.TICKET_CONTRACT_ADDRESS,
        max_block_range=config.MAX_BLOCK_RANGE,
        workers=config.READER_WORKERS,
        on_undecodable=reporter.report,
    )
    return ReconciliationEngine(
        reader,
        store,
        reporter,
        cursor_name=config.CURSOR_NAME,
        start_block=config.START_BLOCK,
        confirmation_depth=config.CONFIRMATION_DEPTH,
        batch_blocks=config.SYNC_BATCH_BLOCKS,
        max_conflict_retries=config.MAX_CONFLICT_RETRIES,
    )


class SyncWorker:
    """
    Periodic driver for the reconciliation engine.

    Lifecycle:
    1. Validate settings, ping the store (fatal on failure)
    2. Loop: acquire run-lock -> sync(timeout) -> release -> wait POLL_INTERVAL
    3. On SIGTERM: finish current tick, exit cleanly
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        store: TicketLedgerStore,
        config: Settings,
        redis_client: Any = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.config = config
        self.redis = redis_client
        self.running = False
        self._stop = threading.Event()

    def check_startup(self) -> None:
        """
        Raises:
            ConfigurationError: Invalid settings or unreachable store.
        """
        self.config.validate_for_sync()
        try:
            self.store.ping()
        except SQLAlchemyError as e:
            raise ConfigurationError(f"Ledger store unreachable at startup: {e}") from e
        confirmed = self.engine.confirmed_block()
        logger.info(
            "Worker '%s' ready: cursor '%s' at block %d, confirmation depth %d",
            self.config.WORKER_NAME,
            self.config.CURSOR_NAME,
            confirmed,
            self.config.CONFIRMATION_DEPTH,
        )

    def start(self) -> None:
        """Start the worker loop."""
        self.check_startup()
        self.running = True

        # Register signal handlers for graceful shutdown
        signal.signal(signal.SIGTERM, self._shutdown_handler)
        signal.signal(signal.SIGINT, self._shutdown_handler)

        while self.running:
            self.tick()
            self._stop.wait(self.config.POLL_INTERVAL)

        logger.info("Worker '%s' stopped gracefully.", self.config.WORKER_NAME)

    def stop(self) -> None:
        self.running = False
        self._stop.set()

    def tick(self) -> int | None:
        """
        Run one sync attempt.

        Returns:
            The confirmed block after the attempt, or None if it did not run
            to completion.
        """
        lock = None
        if self.redis is not None:
            # A timed-out sync can still finish one provider request and one backoff sleep
            ttl = (
                self.config.SYNC_TIMEOUT * 2
                + self.config.PROVIDER_TIMEOUT
                + self.config.PROVIDER_BACKOFF_MAX
            )
            lock = sync_lock(self.redis, self.config.CURSOR_NAME, ttl)
            if not lock.acquire():
                logger.debug("Another worker holds the sync lock; skipping tick")
                return None

        try:
            return self.engine.sync(timeout=self.config.SYNC_TIMEOUT)
        except ProviderUnavailable as e:
            logger.warning("Sync aborted, chain provider unavailable: %s", e)
        except RangeTooLarge as e:
            logger.error("Sync aborted, provider cannot serve blocks %d-%d", e.from_block, e.to_block)
        except SyncTimeout as e:
            logger.warning("Sync timed out; cursor at block %d", e.confirmed_block)
        except StoreConflict as e:
            logger.warning("Sync aborted, cursor moved by another writer: %s", e)
        except SyncInProgress:
            logger.debug("Sync already in progress; skipping tick")
        except Exception:
            logger.exception("Unexpected error in sync tick")
        finally:
            if lock is not None:
                try:
                    lock.release()
                except Exception:
                    logger.warning("Failed to release sync lock", exc_info=True)
        return None

    def _shutdown_handler(self, signum: int, frame: Any) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        logger.info("Received signal %d. Finishing current tick and shutting down...", signum)
        self.stop()


def main() -> None:
    """Entry point for worker process."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    logger.info("Starting Ticket Ledger Sync Worker...")
    store = TicketLedgerStore()
    redis_client = get_redis_client()
    engine = build_engine(settings, store, get_chain_provider(), redis_client)
    worker = SyncWorker(engine, store, settings, redis_client)
    try:
        worker.start()
    except ConfigurationError:
        logger.exception("Refusing to start reconciliation")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
