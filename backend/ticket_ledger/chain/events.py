"""
events.py - Typed ticket events decoded from raw provider logs.

DECODING RULES (ERC-721 Transfer):
- topic0 MUST be keccak256("Transfer(address,address,uint256)")
- from == zero address  -> MINT
- to   == zero address  -> REDEEM (burn)
- otherwise             -> TRANSFER
- Logs flagged removed=true (reorged out) are dropped, not decoded
"""

from dataclasses import dataclass
from typing import Any

from ticket_ledger.errors import DataInconsistency, undecodable_log
from ticket_ledger.models.enums import EventKind

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class ChainEvent:
    """
    Immutable ticket event observed on chain.

    Identity is (block_number, log_index, tx_hash); ordering is
    (block_number, log_index).
    """
    ticket_id: str
    kind: EventKind
    from_address: str | None
    to_address: str
    block_number: int
    log_index: int
    tx_hash: str

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def identity(self) -> tuple[int, int, str]:
        return (self.block_number, self.log_index, self.tx_hash)


def normalize_address(value: str) -> str:
    """
    Lower-case a 20-byte hex address.

    Raises:
        ValueError: If value is not 0x + 40 hex characters.
    """
    if not isinstance(value, str) or not value.startswith("0x") or len(value) != 42:
        raise ValueError(f"Invalid address: {value!r}")
    try:
        int(value[2:], 16)
    except ValueError:
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def _topic_to_address(topic: str) -> str:
    # 32-byte topic, address in the low 20 bytes
    if not isinstance(topic, str) or len(topic) != 66:
        raise ValueError(f"topic is not 32 bytes: {topic!r}")
    return normalize_address("0x" + topic[-40:])


def _quantity(value: Any, field: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    raise ValueError(f"{field} is not a hex quantity: {value!r}")


def is_removed(log: dict[str, Any]) -> bool:
    return bool(log.get("removed", False))


def normalize_log(log: dict[str, Any]) -> ChainEvent:
    """
    Decode a raw eth_getLogs entry into a ChainEvent.

    Parameters:
        log: Raw JSON-RPC log object.

    Returns:
        ChainEvent

    Raises:
        DataInconsistency: With an UNDECODABLE_LOG report if the log is not a
            well-formed ERC-721 Transfer.
    """
    try:
        topics = [t.lower() for t in log.get("topics", [])]
        if not topics or topics[0] != TRANSFER_TOPIC:
            raise ValueError("not a Transfer event")

        if len(topics) == 4:
            token_word = topics[3]
        elif len(topics) == 3 and log.get("data", "0x") not in ("", "0x"):
            # Non-indexed tokenId
            token_word = log["data"][:66]
        else:
            raise ValueError(f"unexpected topic count {len(topics)}")

        from_address = _topic_to_address(topics[1])
        to_address = _topic_to_address(topics[2])
        ticket_id = str(int(token_word, 16))

        if from_address == ZERO_ADDRESS and to_address == ZERO_ADDRESS:
            raise ValueError("transfer from and to the zero address")
        if from_address == ZERO_ADDRESS:
            kind = EventKind.MINT
        elif to_address == ZERO_ADDRESS:
            kind = EventKind.REDEEM
        else:
            kind = EventKind.TRANSFER

        tx_hash = log.get("transactionHash")
        if not isinstance(tx_hash, str):
            raise ValueError("missing transactionHash")

        return ChainEvent(
            ticket_id=ticket_id,
            kind=kind,
            from_address=None if kind == EventKind.MINT else from_address,
            to_address=to_address,
            block_number=_quantity(log.get("blockNumber"), "blockNumber"),
            log_index=_quantity(log.get("logIndex"), "logIndex"),
            tx_hash=tx_hash.lower(),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise DataInconsistency(undecodable_log(log, str(e))) from e
