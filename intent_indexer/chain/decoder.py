import logging
from typing import Any, Dict, List, Optional

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from intent_indexer.contracts import event_topic, find_event_abi, load_abi
from intent_indexer.errors import LogDecodeError
from intent_indexer.model import OrderStatus, OrderStatusChangedEvent, RawLog

logger = logging.getLogger(__name__)


def _is_hashed_when_indexed(abi_type: str) -> bool:
    # Dynamic types are stored as keccak hashes in topics
    return abi_type in ("string", "bytes") or abi_type.endswith("]")


def _format_order_id(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


class OrderEventDecoder:
    """
    Decodes OrderStatusChanged logs from the order engine.

    Works on RawLog so the range-query path and the push path share one
    decoder; indexed inputs come from topics, the rest from data.
    """

    def __init__(
        self,
        event_abi: Dict[str, Any],
        order_id_field: str = "orderId",
        status_field: str = "status",
    ):
        self.event_abi = event_abi
        self.topic0 = event_topic(event_abi)
        self.order_id_field = order_id_field
        self.status_field = status_field

        inputs: List[Dict[str, Any]] = event_abi.get("inputs", [])
        self.indexed_inputs = [i for i in inputs if i.get("indexed")]
        self.data_inputs = [i for i in inputs if not i.get("indexed")]

        names = {i["name"] for i in inputs}
        missing = {order_id_field, status_field} - names
        if missing:
            raise ValueError(
                f"Event {event_abi.get('name')} is missing inputs: {sorted(missing)}"
            )

    @classmethod
    def from_abi_path(cls, path: Optional[str] = None) -> "OrderEventDecoder":
        return cls(find_event_abi(load_abi(path)))

    def matches(self, log: RawLog) -> bool:
        return bool(log.topics) and log.topics[0] == self.topic0

    def decode(self, log: RawLog) -> OrderStatusChangedEvent:
        if not self.matches(log):
            raise LogDecodeError(
                f"Log {log.key} is not an {self.event_abi.get('name')} event"
            )

        indexed_topics = log.topics[1:]
        if len(indexed_topics) != len(self.indexed_inputs):
            raise LogDecodeError(
                f"Log {log.key} has {len(indexed_topics)} indexed topics, "
                f"expected {len(self.indexed_inputs)}"
            )

        values: Dict[str, Any] = {}
        try:
            for item, topic in zip(self.indexed_inputs, indexed_topics):
                if _is_hashed_when_indexed(item["type"]):
                    values[item["name"]] = topic
                else:
                    values[item["name"]] = abi_decode([item["type"]], topic)[0]

            decoded = abi_decode([i["type"] for i in self.data_inputs], log.data)
            for item, value in zip(self.data_inputs, decoded):
                values[item["name"]] = value
        except (DecodingError, ValueError, TypeError) as e:
            raise LogDecodeError(f"Log {log.key} payload could not be decoded: {e}") from e

        try:
            status = OrderStatus.parse(values[self.status_field])
        except ValueError as e:
            raise LogDecodeError(f"Log {log.key}: {e}") from e

        return OrderStatusChangedEvent(
            order_id=_format_order_id(values[self.order_id_field]),
            status=status,
            source_event=log,
        )
