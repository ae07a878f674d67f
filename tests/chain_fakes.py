import asyncio
from typing import Any, List, Optional, Tuple, Union

from eth_abi import encode

from intent_indexer.chain.decoder import OrderEventDecoder
from intent_indexer.chain.source import ChainSource, Notification, Subscription
from intent_indexer.config import IntentsConfig, SubscriptionMode
from intent_indexer.model import OrderStatus, RawLog

ENGINE_ADDRESS = "0x" + "11" * 20

DECODER = OrderEventDecoder.from_abi_path()

_CLOSED = object()


def order_id_for(block_number: int, log_index: int = 0) -> bytes:
    return (block_number * 1000 + log_index).to_bytes(32, "big")


def make_log(
    block_number: int,
    log_index: int = 0,
    status: Union[OrderStatus, int] = OrderStatus.USER_INITIATED,
    order_id: Optional[bytes] = None,
    removed: bool = False,
) -> RawLog:
    if order_id is None:
        order_id = order_id_for(block_number, log_index)
    return RawLog(
        block_number=block_number,
        log_index=log_index,
        transaction_hash="0x" + f"{block_number:032x}{log_index:032x}",
        address=ENGINE_ADDRESS,
        topics=(DECODER.topic0, order_id),
        data=encode(["uint8"], [int(status)]),
        removed=removed,
    )


def make_config(**overrides: Any) -> IntentsConfig:
    values = dict(
        rpc_url="http://localhost:8545",
        order_engine_address=ENGINE_ADDRESS,
        chunk_size=10,
        start_block_offset=1000,
        max_retries=2,
        retry_delay=0,
        rpc_timeout=1.0,
        health_check_interval=60.0,
        reconnect_delay=0,
        stop_timeout=1.0,
    )
    values.update(overrides)
    return IntentsConfig(**values)


class FakeSubscription(Subscription):
    """Notifications are fed by the test through push()."""

    def __init__(self, mode: SubscriptionMode):
        self.mode = mode
        self.opened = False
        self.closed = False
        self._items: "asyncio.Queue[Any]" = asyncio.Queue()

    def push(self, item: Union[Notification, BaseException]) -> None:
        self._items.put_nowait(item)

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True
        self._items.put_nowait(_CLOSED)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._items.get()
            if item is _CLOSED:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeChainSource(ChainSource):
    """In-memory chain: a height and a list of order engine logs."""

    def __init__(self, height: int = 0, logs: Optional[List[RawLog]] = None):
        self.height = height
        self.logs: List[RawLog] = list(logs or [])
        self.get_logs_calls: List[Tuple[int, int]] = []
        self.subscriptions: List[FakeSubscription] = []
        self.height_failures = 0

    async def get_block_number(self) -> int:
        if self.height_failures > 0:
            self.height_failures -= 1
            raise ConnectionError("node unreachable")
        return self.height

    async def get_logs(self, from_block: int, to_block: int) -> List[RawLog]:
        self.get_logs_calls.append((from_block, to_block))
        found = [log for log in self.logs if from_block <= log.block_number <= to_block]
        return sorted(found, key=lambda log: log.key)

    def subscribe(self, mode: SubscriptionMode) -> FakeSubscription:
        subscription = FakeSubscription(mode)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def current_subscription(self) -> FakeSubscription:
        return self.subscriptions[-1]


class RecordingProcessor:
    def __init__(self):
        self.events = []

    async def handle(self, event) -> None:
        self.events.append(event)

    @property
    def keys(self):
        return [event.source_event.key for event in self.events]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
