from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Mapping, Tuple, Union

from hexbytes import HexBytes


class OrderStatus(IntEnum):
    """
    On-chain order lifecycle as stored by the order engine contract.
    Values match the contract's enum ordinal.
    """

    NOT_EXIST = 0
    USER_INITIATED = 1
    AUCTION_IN_PROGRESS = 2
    WAIT_FOR_USER_TX = 3
    WAIT_FOR_ORACLE_CONFIRM_USER_TX = 4
    WAIT_FOR_SOLVER_TX = 5
    WAIT_FOR_ORACLE_CONFIRM_SOLVER_TX = 6
    COMPLETED = 7
    LIQUIDATED = 8
    CANCELLED = 9

    @classmethod
    def parse(cls, raw: Union["OrderStatus", int, str]) -> "OrderStatus":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            text = raw.strip()
            value = int(text, 16) if text.lower().startswith("0x") else int(text)
        else:
            value = int(raw)
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown order status value: {raw!r}") from None

    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.COMPLETED,
            OrderStatus.LIQUIDATED,
            OrderStatus.CANCELLED,
        )

    def __str__(self):
        return self.name


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    text = str(value)
    return int(text, 16) if text.lower().startswith("0x") else int(text)


LogKey = Tuple[int, int]


@dataclass(frozen=True)
class RawLog:
    """
    A chain log normalized from either transport.
    web3 hands back AttributeDicts with ints and HexBytes, the websocket
    push hands back plain JSON with hex strings; both end up here.
    """

    block_number: int
    log_index: int
    transaction_hash: str
    address: str
    topics: Tuple[bytes, ...]
    data: bytes
    removed: bool = False

    @property
    def key(self) -> LogKey:
        return (self.block_number, self.log_index)

    @classmethod
    def from_rpc(cls, entry: Mapping[str, Any]) -> "RawLog":
        return cls(
            block_number=_as_int(entry["blockNumber"]),
            log_index=_as_int(entry["logIndex"]),
            transaction_hash=HexBytes(entry.get("transactionHash") or b"").to_0x_hex(),
            address=str(entry.get("address", "")),
            topics=tuple(bytes(HexBytes(t)) for t in entry.get("topics", [])),
            data=bytes(HexBytes(entry.get("data") or b"")),
            removed=bool(entry.get("removed", False)),
        )

    def to_dict(self) -> dict:
        return {
            "blockNumber": self.block_number,
            "logIndex": self.log_index,
            "transactionHash": self.transaction_hash,
            "address": self.address,
            "topics": [HexBytes(t).to_0x_hex() for t in self.topics],
            "data": HexBytes(self.data).to_0x_hex(),
            "removed": self.removed,
        }


@dataclass
class OrderStatusChangedEvent:
    order_id: str
    status: OrderStatus
    source_event: RawLog
    retries: int = 0

    @property
    def block_number(self) -> int:
        return self.source_event.block_number

    def describe(self) -> str:
        return (
            f"order_id={self.order_id} status={self.status} "
            f"block={self.source_event.block_number} "
            f"log_index={self.source_event.log_index} "
            f"tx={self.source_event.transaction_hash} retries={self.retries}"
        )


@dataclass
class DelayedEvent:
    order_id: str
    status: OrderStatus
    attempts: int = 0
    next_attempt_at: int = 0  # epoch millis

    def is_due(self, now_ms: int) -> bool:
        return now_ms >= self.next_attempt_at


@dataclass
class TransactionData:
    from_address: str
    to: str
    token: str
    amount: int
    confirmed: bool

    @classmethod
    def failed(cls) -> "TransactionData":
        """Found on chain but reverted: every field zeroed, confirmed is True."""
        return cls(from_address="", to="", token="", amount=0, confirmed=True)

