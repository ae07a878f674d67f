import logging
from typing import Iterable, Optional, Set

from intent_indexer.engine.order_processor import OrderProcessor
from intent_indexer.model import OrderStatus, OrderStatusChangedEvent

logger = logging.getLogger(__name__)


class LoggingEventProcessor:
    """Writes every delivered status change to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self.seen = 0

    async def handle(self, event: OrderStatusChangedEvent) -> None:
        self.seen += 1
        logger.log(
            self.level,
            f"[ORDER_STATUS] {event.order_id} -> {event.status} "
            f"(block {event.block_number}, tx {event.source_event.transaction_hash})",
        )


class DelayedQueueForwarder:
    """
    Hands status changes to an OrderProcessor's delayed queue so the
    follow-up (e.g. waiting for confirmations on another chain) happens
    off the delivery path.
    """

    def __init__(
        self,
        order_processor: OrderProcessor,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ):
        self.order_processor = order_processor
        self.statuses: Optional[Set[OrderStatus]] = set(statuses) if statuses else None

    async def handle(self, event: OrderStatusChangedEvent) -> None:
        if self.statuses is not None and event.status not in self.statuses:
            return
        self.order_processor.schedule(event.order_id, event.status)
        logger.debug(
            f"Forwarded {event.order_id} ({event.status}) to {self.order_processor.name}"
        )
