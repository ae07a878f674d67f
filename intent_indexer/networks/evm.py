import logging
from typing import Any, Dict, Optional

from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from intent_indexer.config import NetworkConfig
from intent_indexer.constants import (
    DECIMALS_CACHE_MAX_SIZE,
    DECIMALS_CACHE_TTL_SECONDS,
    EVM_DEFAULT_CONFIRMATIONS,
    EVM_NATIVE_DECIMALS,
    EVM_RETRY_DELAY_SECONDS,
)
from intent_indexer.contracts import ERC20_ABI, ERC20_TRANSFER_TOPIC
from intent_indexer.errors import NetworkConfigurationError
from intent_indexer.model import RawLog, TransactionData
from intent_indexer.networks.base import Network, is_native_token
from intent_indexer.networks.cache import ExpiringCache

logger = logging.getLogger(__name__)


def _topic_to_address(topic: bytes) -> str:
    return Web3.to_checksum_address("0x" + topic[-20:].hex())


class EvmNetwork(Network):
    """
    Account-based EVM chains. A transaction counts as confirmed once
    `confirmations` blocks have been mined on top of its block.
    transfer() returns the hash as soon as the node accepts the raw tx.
    """

    def __init__(
        self,
        rpc_url: str,
        confirmations: int = EVM_DEFAULT_CONFIRMATIONS,
        native_decimals: int = EVM_NATIVE_DECIMALS,
        retry_delay: float = EVM_RETRY_DELAY_SECONDS,
        auth_token: Optional[str] = None,
        decimals_cache: Optional[ExpiringCache[str, int]] = None,
        w3: Optional[Any] = None,
    ):
        self.rpc_url = rpc_url
        self.confirmations = confirmations
        self.native_decimals = native_decimals
        self.retry_delay = retry_delay

        if w3 is None:
            request_kwargs: Dict[str, Any] = {}
            if auth_token:
                request_kwargs["headers"] = {
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {auth_token}",
                }
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs=request_kwargs))
        self.w3 = w3

        if decimals_cache is None:
            decimals_cache = ExpiringCache(DECIMALS_CACHE_TTL_SECONDS, DECIMALS_CACHE_MAX_SIZE)
        self.decimals_cache = decimals_cache

    @classmethod
    def from_config(cls, config: NetworkConfig) -> "EvmNetwork":
        return cls(
            rpc_url=config.rpc_url,
            confirmations=config.confirmations,
            native_decimals=config.native_decimals,
            retry_delay=config.retry_delay,
            auth_token=config.rpc_auth_token,
        )

    def _token_contract(self, token_address: str):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )

    async def get_decimals(self, token_address: str) -> int:
        if is_native_token(token_address):
            return self.native_decimals

        key = token_address.lower()
        cached = self.decimals_cache.get(key)
        if cached is not None:
            return cached

        decimals = int(await self._token_contract(token_address).functions.decimals().call())
        self.decimals_cache.set(key, decimals)
        return decimals

    async def get_tx_data(
        self,
        tx_hash: str,
        token_address: str,
        recipient_address: Optional[str] = None,
    ) -> Optional[TransactionData]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        if not receipt:
            return None

        current_block = int(await self.w3.eth.block_number)
        depth = current_block - int(receipt["blockNumber"])
        confirmed = depth >= self.confirmations
        logger.info(f"Confirmations {tx_hash}: {depth}, confirmed: {confirmed}")

        if int(receipt["status"]) != 1:
            logger.warning(f"Transaction {tx_hash} failed on chain")
            return TransactionData.failed()

        if is_native_token(token_address):
            tx = await self.w3.eth.get_transaction(tx_hash)
            if not tx:
                return None
            return TransactionData(
                from_address=str(tx["from"]),
                to=str(tx.get("to") or ""),
                token=token_address,
                amount=int(tx["value"]),
                confirmed=confirmed,
            )

        transfer = self._find_transfer(receipt, token_address, recipient_address)
        if transfer is None:
            logger.warning(
                f"Transaction {tx_hash} has no {token_address} transfer to {recipient_address}"
            )
            return TransactionData(
                from_address=str(receipt.get("from") or ""),
                to=recipient_address or "",
                token=token_address,
                amount=0,
                confirmed=confirmed,
            )

        transfer.confirmed = confirmed
        return transfer

    def _find_transfer(
        self,
        receipt: Any,
        token_address: str,
        recipient_address: Optional[str],
    ) -> Optional[TransactionData]:
        for entry in receipt.get("logs", []):
            log = RawLog.from_rpc(entry)
            if len(log.topics) != 3 or log.topics[0] != ERC20_TRANSFER_TOPIC:
                continue
            if log.address.lower() != token_address.lower():
                continue

            to = _topic_to_address(log.topics[2])
            if recipient_address and to.lower() != recipient_address.lower():
                continue

            return TransactionData(
                from_address=_topic_to_address(log.topics[1]),
                to=to,
                token=token_address,
                amount=int.from_bytes(log.data, "big"),
                confirmed=False,
            )
        return None

    async def transfer(
        self, private_key: str, to: str, amount: int, token_address: str
    ) -> str:
        if not private_key:
            raise NetworkConfigurationError("EVM transfer requires a private key")

        account = Account.from_key(private_key)
        recipient = Web3.to_checksum_address(to)

        nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
        chain_id = await self.w3.eth.chain_id
        gas_price = await self.w3.eth.gas_price

        if is_native_token(token_address):
            tx: Dict[str, Any] = {
                "to": recipient,
                "value": amount,
                "nonce": nonce,
                "chainId": chain_id,
                "gasPrice": gas_price,
            }
            tx["gas"] = await self.w3.eth.estimate_gas({**tx, "from": account.address})
        else:
            tx = await self._token_contract(token_address).functions.transfer(
                recipient, amount
            ).build_transaction(
                {
                    "from": account.address,
                    "nonce": nonce,
                    "chainId": chain_id,
                    "gasPrice": gas_price,
                }
            )

        signed = account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = HexBytes(tx_hash).to_0x_hex()
        logger.info(f"Submitted transfer {amount} {token_address} -> {recipient}: {tx_hash_hex}")
        return tx_hash_hex

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
