import asyncio
import logging
from collections import OrderedDict
from enum import Enum
from typing import Awaitable, Optional, TypeVar

from intent_indexer.chain.decoder import OrderEventDecoder
from intent_indexer.chain.rpc import call_with_timeout
from intent_indexer.chain.source import ChainSource, Notification
from intent_indexer.config import IntentsConfig, SubscriptionMode
from intent_indexer.constants import RECENT_LOG_KEYS_MAX_SIZE, STOP_DRAIN_POLL_SECONDS
from intent_indexer.engine.dispatcher import EventDispatcher, EventProcessor
from intent_indexer.errors import LogDecodeError
from intent_indexer.event_queue import EventQueue
from intent_indexer.logging_utils import env_bool
from intent_indexer.model import LogKey, OrderStatusChangedEvent, RawLog

logger = logging.getLogger("ChainEventWatcher")

LOG_VERBOSE_EVENTS = env_bool("INTENTS_LOG_VERBOSE_EVENTS", default=False)

T = TypeVar("T")


class WatcherState(str, Enum):
    STOPPED = "stopped"
    HISTORICAL_CATCHUP = "historical_catchup"
    LIVE = "live"
    RECONNECTING = "reconnecting"


class ChainEventWatcher:
    """
    Turns the order engine's OrderStatusChanged logs into one ordered stream.

    History is read in inclusive chunks up to the current height, then a live
    subscription takes over. Every (re)subscription re-runs the catch-up scan
    from the watermark, so blocks mined while disconnected are not lost.

    The watermark (last_processed_block) only moves forward and only after
    the logs up to it have been enqueued. Scans never go below it.
    """

    def __init__(
        self,
        config: IntentsConfig,
        source: ChainSource,
        decoder: OrderEventDecoder,
    ):
        self.config = config
        self.source = source
        self.decoder = decoder

        self.chunk_size = config.chunk_size
        self.subscription_mode = config.subscription_mode or SubscriptionMode.POLLING

        self.event_queue: EventQueue[OrderStatusChangedEvent] = EventQueue()
        self.dispatcher = EventDispatcher(
            self.event_queue,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )

        self.running = False
        self._state = WatcherState.STOPPED
        self._stop_requested = False
        self.last_processed_block: Optional[int] = None
        # Set when a pushed log moved the watermark; that block may be partial
        self._watermark_from_push = False

        # Keys of logs already enqueued; guards re-scans of a chunk that was
        # interrupted and same-block pushes in LOGS mode.
        self.recent_log_keys: "OrderedDict[LogKey, None]" = OrderedDict()

        self._scan_lock = asyncio.Lock()
        self._reconnecting = False
        self._catch_up_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._live_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None

        self.reconnect_count = 0
        self.decode_failures = 0

    @property
    def state(self) -> WatcherState:
        return self._state

    def _set_state(self, state: WatcherState) -> None:
        if state != self._state:
            logger.info(f"State {self._state.value} -> {state.value}")
            self._state = state

    def add_processor(self, processor: EventProcessor) -> None:
        self.dispatcher.add_processor(processor)

    async def _rpc(self, awaitable: Awaitable[T], label: str) -> T:
        return await call_with_timeout(awaitable, self.config.rpc_timeout, label)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            logger.warning("Indexer is already running")
            return

        self.running = True
        self._stop_requested = False
        logger.info(
            f"Starting indexer from block {self.last_processed_block} "
            f"mode={self.subscription_mode.value} chunk_size={self.chunk_size}"
        )

        # Tracked so stop() can interrupt a long first drain
        self._catch_up_task = asyncio.create_task(
            self.catch_up(), name="indexer-initial-catch-up"
        )
        try:
            await self._catch_up_task
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.info("Initial indexing pass interrupted by stop")
            return
        except Exception as e:
            logger.error(f"Error in initial indexing pass: {e}")
            self._schedule_reconnect(f"initial catch-up failed: {e}")
        else:
            if self.running:
                self._start_live()
        finally:
            self._catch_up_task = None

        if self.running:
            self._health_task = asyncio.create_task(
                self._health_check_loop(), name="indexer-health-check"
            )

    async def stop(self) -> None:
        if not self.running:
            logger.warning("Indexer is not running")
            return

        logger.info("Stopping indexer...")
        self.running = False
        self._stop_requested = True
        self._set_state(WatcherState.STOPPED)

        current = asyncio.current_task()
        tasks = [
            task
            for task in (
                self._catch_up_task,
                self._reconnect_task,
                self._health_task,
                self._live_task,
            )
            if task is not None and not task.done() and task is not current
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._reconnect_task = None
        self._health_task = None
        self._live_task = None
        self._reconnecting = False

        await self._drain_before_stop()

    async def _drain_before_stop(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.stop_timeout

        while not self.event_queue.is_empty() and self.dispatcher.processors:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break

            logger.info(
                f"Waiting for {self.event_queue.size()} events to be processed before stopping"
            )
            try:
                await asyncio.wait_for(self.dispatcher.process_event_queue(), timeout=remaining)
            except asyncio.TimeoutError:
                break

            if not self.event_queue.is_empty():
                await asyncio.sleep(STOP_DRAIN_POLL_SECONDS)

        remaining_events = self.event_queue.size()
        if remaining_events:
            logger.warning(
                f"Indexer stopped with {remaining_events} undelivered events "
                f"(watermark={self.last_processed_block})"
            )
        else:
            logger.info("Indexer stopped")

    # ------------------------------------------------------------------
    # Historical scans
    # ------------------------------------------------------------------

    async def catch_up(self) -> int:
        """Scan from the watermark up to the current chain height."""
        self._set_state(WatcherState.HISTORICAL_CATCHUP)

        target = await self._rpc(self.source.get_block_number(), "get_block_number")

        if self.last_processed_block is None:
            self.last_processed_block = max(0, target - self.config.start_block_offset)
            logger.info(
                f"Seeded watermark at block {self.last_processed_block} "
                f"(height={target} offset={self.config.start_block_offset})"
            )

        # Pushed logs may have covered only part of the watermark block
        rescan_watermark_block = (
            self.subscription_mode == SubscriptionMode.LOGS and self._watermark_from_push
        )
        from_block = self.last_processed_block
        if not rescan_watermark_block:
            from_block += 1
        return await self.scan_range(
            from_block,
            target,
            rescan_watermark_block=rescan_watermark_block,
        )

    async def scan_range(
        self, from_block: int, to_block: int, rescan_watermark_block: bool = False
    ) -> int:
        """
        Enqueue every log in [from_block, to_block], chunk by chunk, draining
        the queue after each chunk. Returns the number of events enqueued.
        """
        async with self._scan_lock:
            if self.last_processed_block is not None:
                floor = self.last_processed_block
                if not rescan_watermark_block:
                    floor += 1
                from_block = max(from_block, floor)

            if from_block > to_block:
                return 0

            logger.info(
                f"Indexing from block {from_block} to {to_block} "
                f"({to_block - from_block + 1} blocks)"
            )

            enqueued = 0
            for chunk_start in range(from_block, to_block + 1, self.chunk_size):
                if self._stop_requested:
                    logger.info(f"Stop requested, scan halted at block {chunk_start}")
                    break

                chunk_end = min(chunk_start + self.chunk_size - 1, to_block)
                logs = await self._rpc(
                    self.source.get_logs(chunk_start, chunk_end),
                    f"get_logs[{chunk_start}-{chunk_end}]",
                )
                logger.info(
                    f"Found {len(logs)} events between blocks {chunk_start} and {chunk_end}"
                )

                for log in logs:
                    if self._enqueue_log(log):
                        enqueued += 1

                self._advance_watermark(chunk_end)
                await self.dispatcher.process_event_queue()

            return enqueued

    def _enqueue_log(self, log: RawLog) -> bool:
        if log.removed:
            logger.warning(
                f"Ignoring removed log block={log.block_number} "
                f"log_index={log.log_index} tx={log.transaction_hash}"
            )
            return False

        if log.key in self.recent_log_keys:
            logger.debug(f"Ignoring already enqueued log {log.key}")
            return False

        try:
            event = self.decoder.decode(log)
        except LogDecodeError as e:
            self.decode_failures += 1
            logger.error(f"[DECODE_FAILED] Skipping log: {e} raw_log={log.to_dict()}")
            return False

        self.event_queue.add(event)
        self._remember_log_key(log.key)

        if LOG_VERBOSE_EVENTS:
            logger.debug(f"[EVENT] {event.describe()}")
        return True

    def _remember_log_key(self, key: LogKey) -> None:
        self.recent_log_keys[key] = None
        self.recent_log_keys.move_to_end(key)
        while len(self.recent_log_keys) > RECENT_LOG_KEYS_MAX_SIZE:
            self.recent_log_keys.popitem(last=False)

    def _advance_watermark(self, block: int, from_push: bool = False) -> None:
        if self.last_processed_block is None or block > self.last_processed_block:
            self.last_processed_block = block
            self._watermark_from_push = from_push
        elif block == self.last_processed_block and not from_push:
            self._watermark_from_push = False

    # ------------------------------------------------------------------
    # Live subscription
    # ------------------------------------------------------------------

    def _start_live(self) -> None:
        self._live_task = asyncio.create_task(self._run_live(), name="indexer-live")

    async def _run_live(self) -> None:
        reason = "subscription closed by remote"
        try:
            async with self.source.subscribe(self.subscription_mode) as subscription:
                # Close the gap between the last scan and the subscription start
                await self.catch_up()
                self._set_state(WatcherState.LIVE)
                logger.info(
                    f"Live subscription active mode={self.subscription_mode.value} "
                    f"watermark={self.last_processed_block}"
                )

                async for notification in subscription:
                    if not self.running:
                        break
                    await self._handle_notification(notification)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(f"Live subscription failed: {reason}")

        if self.running:
            self._schedule_reconnect(reason)

    async def _handle_notification(self, notification: Notification) -> None:
        if isinstance(notification, RawLog):
            await self._handle_pushed_log(notification)
            return

        block_number = int(notification)
        if self.last_processed_block is None:
            from_block = block_number
        else:
            from_block = self.last_processed_block + 1
        await self.scan_range(from_block, block_number)

    async def _handle_pushed_log(self, log: RawLog) -> None:
        async with self._scan_lock:
            if (
                self.last_processed_block is not None
                and log.block_number < self.last_processed_block
            ):
                logger.debug(
                    f"Ignoring pushed log {log.key} below watermark {self.last_processed_block}"
                )
                return

            if self._enqueue_log(log):
                self._advance_watermark(log.block_number, from_push=True)

        await self.dispatcher.process_event_queue()

    # ------------------------------------------------------------------
    # Reconnect & liveness
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, reason: str) -> None:
        if not self.running:
            return
        if self._reconnecting:
            logger.debug(f"Reconnect already in flight, ignoring: {reason}")
            return

        self._reconnecting = True
        self._set_state(WatcherState.RECONNECTING)
        logger.warning(
            f"[RECONNECT] Reconnecting in {self.config.reconnect_delay}s: {reason}"
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect(), name="indexer-reconnect"
        )

    async def _reconnect(self) -> None:
        try:
            await self._teardown_live()
            await asyncio.sleep(self.config.reconnect_delay)
            if not self.running:
                return

            self.reconnect_count += 1
            logger.info(
                f"[RECONNECT] Re-establishing live subscription "
                f"(attempt {self.reconnect_count}, watermark={self.last_processed_block})"
            )
            self._start_live()
        finally:
            self._reconnecting = False

    async def _teardown_live(self) -> None:
        task, self._live_task = self._live_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _health_check_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.config.health_check_interval)
            if not self.running:
                break
            if self._reconnecting:
                continue

            if self._live_task is None or self._live_task.done():
                self._schedule_reconnect("live task is not running")
                continue

            try:
                height = await self._rpc(self.source.get_block_number(), "health_check")
                logger.debug(
                    f"[HEALTH_CHECK] ok height={height} watermark={self.last_processed_block} "
                    f"queued={self.event_queue.size()}"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[HEALTH_CHECK] Liveness probe failed: {e}")
                self._schedule_reconnect(f"health check failed: {e}")
