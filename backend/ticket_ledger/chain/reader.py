"""
reader.py - Chain Event Reader.

Turns a block range into an ordered list of ChainEvents.

GUARANTEES:
- Output ascending by (block_number, log_index)
- No duplicate (block_number, log_index, tx_hash) identities
- Ranges larger than max_block_range are split and fetched in parallel,
  then re-merged; provider "too many results" answers split further
- Read-only against the chain
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from ticket_ledger.chain.events import TRANSFER_TOPIC, ChainEvent, is_removed, normalize_log
from ticket_ledger.chain.provider import ChainProvider
from ticket_ledger.errors import DataInconsistency, InconsistencyReport, RangeTooLarge

logger = logging.getLogger(__name__)


def split_range(from_block: int, to_block: int, size: int) -> list[tuple[int, int]]:
    """Inclusive sub-ranges of at most `size` blocks covering [from_block, to_block]."""
    ranges = []
    start = from_block
    while start <= to_block:
        end = min(start + size - 1, to_block)
        ranges.append((start, end))
        start = end + 1
    return ranges


class ChainEventReader:
    def __init__(
        self,
        provider: ChainProvider,
        contract_address: str | None,
        max_block_range: int = 1000,
        workers: int = 4,
        on_undecodable: Callable[[InconsistencyReport], None] | None = None,
    ):
        if max_block_range <= 0:
            raise ValueError("max_block_range must be > 0")
        self.provider = provider
        self.contract_address = contract_address
        self.max_block_range = max_block_range
        self.workers = max(1, workers)
        self.on_undecodable = on_undecodable

    def head(self) -> int:
        return self.provider.block_number()

    def fetch_events(
        self,
        from_block: int,
        to_block: int,
        check_deadline: Callable[[], None] | None = None,
    ) -> list[ChainEvent]:
        """
        Fetch ticket events in [from_block, to_block].

        check_deadline, when given, is called before every provider request
        and retry sleep; whatever it raises aborts the fetch.

        Raises:
            ValueError: If from_block > to_block.
            ProviderUnavailable: Provider retries exhausted.
            RangeTooLarge: A single block exceeds provider limits.
        """
        if from_block > to_block:
            raise ValueError(f"from_block {from_block} > to_block {to_block}")

        ranges = split_range(from_block, to_block, self.max_block_range)
        if len(ranges) == 1 or self.workers == 1:
            chunks = [self._fetch_range(lo, hi, check_deadline) for lo, hi in ranges]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.workers, len(ranges)),
                thread_name_prefix="chain-reader",
            ) as pool:
                chunks = list(pool.map(lambda r: self._fetch_range(*r, check_deadline), ranges))

        events = self._merge(chunks)
        logger.debug(
            "Fetched %d events for blocks %d-%d (%d sub-ranges)",
            len(events),
            from_block,
            to_block,
            len(ranges),
        )
        return events

    def _fetch_range(
        self,
        lo: int,
        hi: int,
        check_deadline: Callable[[], None] | None = None,
    ) -> list[ChainEvent]:
        if check_deadline is not None:
            check_deadline()
        try:
            logs = self.provider.get_logs(
                lo,
                hi,
                address=self.contract_address,
                topics=[TRANSFER_TOPIC],
                check_deadline=check_deadline,
            )
        except RangeTooLarge:
            if lo == hi:
                raise RangeTooLarge(lo, hi)
            mid = (lo + hi) // 2
            logger.info("Provider refused blocks %d-%d; splitting at %d", lo, hi, mid)
            return self._fetch_range(lo, mid, check_deadline) + self._fetch_range(
                mid + 1, hi, check_deadline
            )
        return self._decode(logs)

    def _decode(self, logs: list[dict[str, Any]]) -> list[ChainEvent]:
        events = []
        for log in logs:
            if is_removed(log):
                continue
            try:
                events.append(normalize_log(log))
            except DataInconsistency as e:
                logger.warning("Skipping undecodable log: %s", e.report.message)
                if self.on_undecodable is not None:
                    self.on_undecodable(e.report)
        return events

    @staticmethod
    def _merge(chunks: list[list[ChainEvent]]) -> list[ChainEvent]:
        seen: set[tuple[int, int, str]] = set()
        merged = []
        for event in sorted(
            (e for chunk in chunks for e in chunk), key=lambda e: e.position
        ):
            if event.identity in seen:
                continue
            seen.add(event.identity)
            merged.append(event)
        return merged
