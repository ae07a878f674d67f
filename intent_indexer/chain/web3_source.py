import itertools
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import websockets
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from intent_indexer.chain.rpc import call_with_timeout
from intent_indexer.chain.source import (
    ChainSource,
    Notification,
    PollingSubscription,
    Subscription,
)
from intent_indexer.config import IntentsConfig, SubscriptionMode
from intent_indexer.constants import POLLING_INTERVAL_SECONDS, RPC_TIMEOUT_SECONDS
from intent_indexer.errors import SubscriptionError
from intent_indexer.logging_utils import env_bool
from intent_indexer.model import RawLog

logger = logging.getLogger(__name__)

LOG_VERBOSE_PUSH = env_bool("INTENTS_LOG_VERBOSE_PUSH", default=False)

WS_PING_INTERVAL_SECONDS = 20.0
WS_PING_TIMEOUT_SECONDS = 20.0


def _auth_headers(auth_token: Optional[str]) -> Dict[str, str]:
    if not auth_token:
        return {}
    return {"Authorization": f"Bearer {auth_token}"}


class WebSocketSubscription(Subscription):
    """
    eth_subscribe over a dedicated websocket connection.
    One connection per subscription; nothing is reused across reconnects.
    """

    _request_ids = itertools.count(1)

    def __init__(
        self,
        ws_url: str,
        params: List[Any],
        mode: SubscriptionMode,
        headers: Optional[Dict[str, str]] = None,
        open_timeout: float = RPC_TIMEOUT_SECONDS,
    ):
        self.ws_url = ws_url
        self.params = params
        self.mode = mode
        self.headers = headers or {}
        self.open_timeout = open_timeout
        self.subscription_id: Optional[str] = None
        self._ws: Optional[Any] = None

    async def open(self) -> None:
        logger.info("Opening websocket subscription url=%s params=%s", self.ws_url, self.params[0])
        self._ws = await websockets.connect(
            self.ws_url,
            additional_headers=self.headers or None,
            open_timeout=self.open_timeout,
            ping_interval=WS_PING_INTERVAL_SECONDS,
            ping_timeout=WS_PING_TIMEOUT_SECONDS,
        )

        # __aexit__ does not run when __aenter__ raises
        try:
            await self._subscribe()
        except BaseException:
            await self.close()
            raise

        logger.info(
            "Subscribed mode=%s subscription_id=%s", self.mode.value, self.subscription_id
        )

    async def _subscribe(self) -> None:
        assert self._ws is not None
        request_id = next(self._request_ids)
        await self._ws.send(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "method": "eth_subscribe",
                    "params": self.params,
                }
            )
        )

        reply = await call_with_timeout(
            self._await_reply(request_id), self.open_timeout, "eth_subscribe"
        )
        if reply.get("error"):
            raise SubscriptionError(f"eth_subscribe rejected: {reply['error']}")

        self.subscription_id = reply.get("result")
        if not self.subscription_id:
            raise SubscriptionError(f"eth_subscribe returned no subscription id: {reply}")

    async def _await_reply(self, request_id: int) -> Dict[str, Any]:
        assert self._ws is not None
        while True:
            payload = json.loads(await self._ws.recv())
            if payload.get("id") == request_id:
                return payload

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        self.subscription_id = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing websocket: {e}")

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self._notifications()

    async def _notifications(self) -> AsyncIterator[Notification]:
        if self._ws is None:
            raise SubscriptionError("Subscription is not open")

        async for message in self._ws:
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON websocket message: {message!r}")
                continue

            if payload.get("method") != "eth_subscription":
                continue

            params = payload.get("params") or {}
            if params.get("subscription") != self.subscription_id:
                continue

            result = params.get("result")
            if LOG_VERBOSE_PUSH:
                logger.debug(f"[PUSH] {result}")

            if self.mode == SubscriptionMode.LOGS:
                yield RawLog.from_rpc(result)
            else:
                yield int(result["number"], 16)


class Web3ChainSource(ChainSource):
    """
    JSON-RPC over HTTP for block height and range queries (web3),
    eth_subscribe over websockets for the live channel.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        topic0: bytes,
        ws_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        polling_interval: float = POLLING_INTERVAL_SECONDS,
        rpc_timeout: float = RPC_TIMEOUT_SECONDS,
    ):
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.topic0 = HexBytes(topic0).to_0x_hex()
        self.polling_interval = polling_interval
        self.rpc_timeout = rpc_timeout
        self._headers = _auth_headers(auth_token)

        request_kwargs: Dict[str, Any] = {}
        if self._headers:
            request_kwargs["headers"] = {"Content-Type": "application/json", **self._headers}

        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs=request_kwargs))

    @classmethod
    def from_config(cls, config: IntentsConfig, topic0: bytes) -> "Web3ChainSource":
        return cls(
            rpc_url=config.rpc_url,
            contract_address=config.order_engine_address,
            topic0=topic0,
            ws_url=config.ws_url,
            auth_token=config.rpc_auth_token,
            polling_interval=config.polling_interval,
            rpc_timeout=config.rpc_timeout,
        )

    async def get_block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def get_logs(self, from_block: int, to_block: int) -> List[RawLog]:
        entries = await self.w3.eth.get_logs(
            {
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": self.contract_address,
                "topics": [self.topic0],
            }
        )
        logs = [RawLog.from_rpc(entry) for entry in entries]
        logs.sort(key=lambda log: log.key)
        return logs

    def subscribe(self, mode: SubscriptionMode) -> Subscription:
        if mode == SubscriptionMode.POLLING:
            return PollingSubscription(self, self.polling_interval, self.rpc_timeout)

        if not self.ws_url:
            raise SubscriptionError(f"Subscription mode {mode.value} requires a ws_url")

        if mode == SubscriptionMode.NEW_HEADS:
            params: List[Any] = ["newHeads"]
        else:
            params = ["logs", {"address": self.contract_address, "topics": [self.topic0]}]

        return WebSocketSubscription(
            self.ws_url,
            params,
            mode,
            headers=self._headers,
            open_timeout=self.rpc_timeout,
        )

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
