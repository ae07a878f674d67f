import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from intent_indexer.constants import (
    BACKOFF_BASE_MS,
    BACKOFF_MAX_MS,
    DELAYED_QUEUE_STOP_GRACE_SECONDS,
    DELAYED_QUEUE_TICK_SECONDS,
)
from intent_indexer.event_queue import EventQueue
from intent_indexer.model import DelayedEvent, OrderStatus

logger = logging.getLogger(__name__)


def backoff_ms(attempts: int) -> int:
    """Capped exponential back-off: 3s, 6s, 12s, ... up to 60s."""
    if attempts < 1:
        return 0
    return min(BACKOFF_MAX_MS, BACKOFF_BASE_MS * 2 ** (attempts - 1))


def now_ms() -> int:
    return int(time.time() * 1000)


class OrderProcessor(ABC):
    """
    Base class for long-lived workers that re-check chain state later.

    Subclasses implement process(); anything that should be looked at again
    goes through schedule(). A background loop ticks over the delayed queue:
    entries still in back-off are rotated to the tail untouched, due entries
    are processed, failures are pushed back with capped exponential back-off.
    There is no maximum number of attempts.
    """

    def __init__(
        self,
        tick_interval: float = DELAYED_QUEUE_TICK_SECONDS,
        stop_grace_period: float = DELAYED_QUEUE_STOP_GRACE_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.delayed_queue: EventQueue[DelayedEvent] = EventQueue()
        self.tick_interval = tick_interval
        self.stop_grace_period = stop_grace_period
        self.clock = clock

        self.running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def process(self, order_id: str, status: OrderStatus) -> None:
        pass

    def schedule(self, order_id: str, status: OrderStatus, delay_ms: int = 0) -> DelayedEvent:
        event = DelayedEvent(
            order_id=order_id,
            status=status,
            next_attempt_at=self.clock() + delay_ms,
        )
        self.delayed_queue.add(event)
        return event

    async def start(self) -> None:
        if self.running:
            logger.warning(f"{self.name} already running")
            return

        self.running = True
        self._task = asyncio.create_task(
            self._process_delayed_queue_loop(), name=f"{self.name}-delayed-queue"
        )
        logger.info(f"{self.name} started")

    async def stop(self) -> None:
        if not self.running:
            logger.warning(f"{self.name} already stopped")
            return

        logger.info(f"Stopping {self.name}...")
        self.running = False

        # In-flight work gets a grace period; the queue is not drained
        await asyncio.sleep(self.stop_grace_period)

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if not self.delayed_queue.is_empty():
            logger.info(
                f"{self.name} stopped with {self.delayed_queue.size()} delayed events pending"
            )
        else:
            logger.info(f"{self.name} stopped.")

    async def _process_delayed_queue_loop(self) -> None:
        while self.running:
            try:
                await self.process_delayed_queue()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in delayed queue loop: {e}", exc_info=True)
            await asyncio.sleep(self.tick_interval)

    async def process_delayed_queue(self) -> int:
        """
        One pass over the delayed queue. Each entry present when the pass
        starts is looked at once; entries added during the pass wait for the
        next tick. Returns the number of entries processed successfully.
        """
        processed = 0
        pending = self.delayed_queue.size()

        while pending > 0 and self.running:
            pending -= 1
            event = self.delayed_queue.peek()
            if event is None:
                break

            if not event.is_due(self.clock()):
                self.delayed_queue.rotate()
                continue

            try:
                await self.process(event.order_id, event.status)
            except Exception as e:
                event.attempts += 1
                delay = backoff_ms(event.attempts)
                event.next_attempt_at = self.clock() + delay
                logger.error(
                    f"Error processing delayed event order_id={event.order_id} "
                    f"status={event.status} attempts={event.attempts}, "
                    f"next attempt in {delay}ms: {e}"
                )
                self.delayed_queue.rotate()
                continue

            self.delayed_queue.remove()
            processed += 1

        return processed
