import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

from intent_indexer.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_SECONDS
from intent_indexer.event_queue import EventQueue
from intent_indexer.model import OrderStatusChangedEvent

logger = logging.getLogger(__name__)

ProcessorCallable = Callable[[OrderStatusChangedEvent], Union[None, Awaitable[None]]]
EventProcessor = Union[ProcessorCallable, Any]  # or any object with handle(event)


class EventDispatcher:
    """
    Drains the event queue in FIFO order through every registered processor.

    A failing event blocks its successors: it is retried in place up to
    max_retries times, then dead-lettered (logged in full) and removed.
    """

    def __init__(
        self,
        queue: EventQueue[OrderStatusChangedEvent],
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        self.queue = queue
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.processors: List[EventProcessor] = []

        self._processing = False
        self.delivered_count = 0
        self.dead_letter_count = 0
        self.last_dead_letter: Optional[OrderStatusChangedEvent] = None

    @property
    def is_processing(self) -> bool:
        return self._processing

    def add_processor(self, processor: EventProcessor) -> None:
        if not callable(processor) and not callable(getattr(processor, "handle", None)):
            raise TypeError(f"Processor must be callable or define handle(event): {processor!r}")
        self.processors.append(processor)

    async def _invoke(self, processor: EventProcessor, event: OrderStatusChangedEvent) -> None:
        handler = processor if callable(processor) else processor.handle
        result = handler(event)
        if inspect.isawaitable(result):
            await result

    async def process_event_queue(self) -> None:
        if self._processing:
            logger.debug("Event queue drain already in progress, skipping")
            return
        if self.queue.is_empty() or not self.processors:
            return

        self._processing = True
        try:
            logger.info(f"Processing event queue with {self.queue.size()} events")

            while not self.queue.is_empty():
                event = self.queue.peek()
                if event is None:
                    break

                try:
                    for processor in self.processors:
                        await self._invoke(processor, event)
                except Exception as e:
                    logger.error(f"Error processing event {event.describe()}: {e}")

                    if event.retries < self.max_retries:
                        event.retries += 1
                        logger.info(
                            f"Retrying event processing ({event.retries}/{self.max_retries}) "
                            f"order_id={event.order_id}"
                        )
                        await asyncio.sleep(self.retry_delay)
                    else:
                        self._dead_letter(event)
                        self.queue.remove()
                    continue

                self.queue.remove()
                self.delivered_count += 1
        finally:
            self._processing = False

    def _dead_letter(self, event: OrderStatusChangedEvent) -> None:
        self.dead_letter_count += 1
        self.last_dead_letter = event
        logger.error(
            f"[DEAD_LETTER] Max retries reached, removing event from queue: "
            f"{event.describe()} status_value={int(event.status)} "
            f"raw_log={event.source_event.to_dict()}"
        )
