import asyncio
from typing import Awaitable, TypeVar

from intent_indexer.errors import RpcTimeoutError

T = TypeVar("T")


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, label: str) -> T:
    """
    Await a chain call under a deadline.

    The underlying transport is only interrupted if it honors cancellation.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise RpcTimeoutError(label, timeout) from None
