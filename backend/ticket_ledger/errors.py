"""
errors.py - Error Taxonomy

Four families, each with its own propagation rule:
- Provider errors: transient ones are retried inside the provider client,
  exhaustion surfaces as ProviderUnavailable and aborts a sync attempt.
- Data inconsistencies: reported to the operator channel, never abort a sync.
- Store conflicts: optimistic-concurrency races, retried by the engine.
- Configuration errors: fatal, the worker refuses to start.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any


class TicketLedgerError(Exception):
    """Base exception for ticket ledger failures."""

    pass


class ConfigurationError(TicketLedgerError):
    """Invalid settings or unreachable store at startup."""

    pass


# --- Chain provider ---


class TransientProviderError(TicketLedgerError):
    """Network failure or rate limit. Retried with backoff by the provider."""

    pass


class ProviderUnavailable(TicketLedgerError):
    """Raised when all provider retry attempts are exhausted."""

    def __init__(self, message=None, *, method=None, attempts=None, last_error=None):
        super().__init__(message or "Chain provider unavailable")
        self.method = method
        self.attempts = attempts
        self.last_error = last_error


class RangeTooLarge(TicketLedgerError):
    """The provider refuses a log query even for the smallest splittable range."""

    def __init__(self, from_block: int, to_block: int, message: str | None = None):
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(message or f"Block range {from_block}-{to_block} too large for provider")


# --- Store ---


class StoreConflict(TicketLedgerError):
    """A conditional write lost a race with another writer."""

    def __init__(self, key: str, expected: Any = None, actual: Any = None):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"Conditional write conflict on {key}: expected {expected}, found {actual}")


class TicketNotFound(TicketLedgerError):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} not found")


# --- Sync lifecycle ---


class SyncTimeout(TicketLedgerError):
    """Sync deadline exceeded. Cursor holds the last fully applied sub-batch."""

    def __init__(self, confirmed_block: int):
        self.confirmed_block = confirmed_block
        super().__init__(f"Sync deadline exceeded (cursor at block {confirmed_block})")


class SyncInProgress(TicketLedgerError):
    """Another sync() holds the run-lock."""

    pass


# --- Data inconsistencies ---


class InconsistencyCode(str, Enum):
    DUPLICATE_MINT = "DUPLICATE_MINT"
    UNKNOWN_TICKET = "UNKNOWN_TICKET"
    CONFLICT_RETRIES_EXHAUSTED = "CONFLICT_RETRIES_EXHAUSTED"
    UNDECODABLE_LOG = "UNDECODABLE_LOG"


@dataclass(frozen=True)
class InconsistencyReport:
    """Immutable description of an event the ledger could not apply."""
    code: InconsistencyCode
    message: str
    ticket_id: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "ticket_id": self.ticket_id,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "tx_hash": self.tx_hash,
            "details": self.details or {},
        }


class DataInconsistency(TicketLedgerError):
    """Raised while applying an event the ledger state contradicts."""
    def __init__(self, report: InconsistencyReport):
        self.report = report
        super().__init__(report.message)


def _quantity_or_none(value: Any) -> Optional[int]:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError:
            return None
    return None


def _event_fields(event) -> Dict[str, Any]:
    return {
        "ticket_id": event.ticket_id,
        "block_number": event.block_number,
        "log_index": event.log_index,
        "tx_hash": event.tx_hash,
    }


def duplicate_mint(event, owner_address: str) -> InconsistencyReport:
    """
    Mint observed for a ticket that already exists and is active.

    Parameters:
        event: The offending ChainEvent.
        owner_address: Current owner held by the ledger.
    """
    return InconsistencyReport(
        code=InconsistencyCode.DUPLICATE_MINT,
        message="Mint for a ticket that is already active",
        details={"current_owner": owner_address, "mint_to": event.to_address},
        **_event_fields(event),
    )


def unknown_ticket(event) -> InconsistencyReport:
    """Transfer or redeem for a ticket the ledger has never seen minted."""
    return InconsistencyReport(
        code=InconsistencyCode.UNKNOWN_TICKET,
        message=f"{event.kind.value} for a ticket with no ledger record",
        details={"from": event.from_address, "to": event.to_address},
        **_event_fields(event),
    )


def conflict_retries_exhausted(event, attempts: int) -> InconsistencyReport:
    return InconsistencyReport(
        code=InconsistencyCode.CONFLICT_RETRIES_EXHAUSTED,
        message="Conditional update kept conflicting; event not applied",
        details={"attempts": attempts},
        **_event_fields(event),
    )


def undecodable_log(log: Dict[str, Any], reason: str) -> InconsistencyReport:
    """
    Raw provider log that does not decode into a ticket event.

    Parameters:
        log: The raw JSON-RPC log object.
        reason: Why decoding failed.
    """
    return InconsistencyReport(
        code=InconsistencyCode.UNDECODABLE_LOG,
        message=f"Cannot decode log: {reason}",
        block_number=_quantity_or_none(log.get("blockNumber")),
        log_index=_quantity_or_none(log.get("logIndex")),
        tx_hash=log.get("transactionHash"),
        details={"topics": log.get("topics", []), "address": log.get("address")},
    )
