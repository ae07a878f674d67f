import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Union

from intent_indexer.chain.rpc import call_with_timeout
from intent_indexer.config import SubscriptionMode
from intent_indexer.model import RawLog

logger = logging.getLogger(__name__)

# NEW_HEADS / POLLING yield block heights, LOGS yields raw logs
Notification = Union[int, RawLog]


class Subscription(ABC):
    """
    A live push channel. Entering opens the transport, exiting tears it
    down; iteration ends (or raises) when the transport goes away.
    """

    mode: SubscriptionMode

    async def __aenter__(self) -> "Subscription":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[Notification]:
        pass


class ChainSource(ABC):
    """Where the watcher reads the order engine's logs from."""

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_logs(self, from_block: int, to_block: int) -> List[RawLog]:
        """Logs in the inclusive range, sorted by (block_number, log_index)."""
        pass

    @abstractmethod
    def subscribe(self, mode: SubscriptionMode) -> Subscription:
        pass

    async def close(self) -> None:
        pass


class PollingSubscription(Subscription):
    """Block-height feed for endpoints without a websocket."""

    mode = SubscriptionMode.POLLING

    def __init__(self, source: ChainSource, interval: float, rpc_timeout: float):
        self.source = source
        self.interval = interval
        self.rpc_timeout = rpc_timeout
        self._closed = True
        self._last_height: Optional[int] = None

    async def open(self) -> None:
        self._closed = False
        self._last_height = None

    async def close(self) -> None:
        self._closed = True

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self._heights()

    async def _heights(self) -> AsyncIterator[Notification]:
        while not self._closed:
            height = await call_with_timeout(
                self.source.get_block_number(), self.rpc_timeout, "poll_block_number"
            )
            if self._last_height is None or height > self._last_height:
                self._last_height = height
                yield height
            await asyncio.sleep(self.interval)
