from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock

from hexbytes import HexBytes
from web3.exceptions import TransactionNotFound

from intent_indexer.contracts import ERC20_TRANSFER_TOPIC
from intent_indexer.errors import NetworkConfigurationError
from intent_indexer.networks.evm import EvmNetwork

TOKEN = "0x" + "22" * 20
SENDER = "0x" + "33" * 20
RECIPIENT = "0x" + "44" * 20
TX_HASH = "0x" + "ab" * 32


async def _value(value):
    return value


class FakeEth:
    """Awaitable properties the way AsyncWeb3 exposes them."""

    def __init__(self):
        self.height = 100
        self.chain_id_value = 1
        self.gas_price_value = 10**9
        self.get_transaction_receipt = AsyncMock()
        self.get_transaction = AsyncMock()
        self.get_transaction_count = AsyncMock(return_value=3)
        self.estimate_gas = AsyncMock(return_value=21000)
        self.send_raw_transaction = AsyncMock(return_value=HexBytes("0x" + "cd" * 32))
        self.contract = MagicMock()

    @property
    def block_number(self):
        return _value(self.height)

    @property
    def chain_id(self):
        return _value(self.chain_id_value)

    @property
    def gas_price(self):
        return _value(self.gas_price_value)


def _topic(address: str) -> HexBytes:
    return HexBytes("0x" + "00" * 12 + address[2:])


def _transfer_log(token: str, sender: str, recipient: str, amount: int) -> dict:
    return {
        "blockNumber": 90,
        "logIndex": 0,
        "transactionHash": HexBytes(TX_HASH),
        "address": token,
        "topics": [HexBytes(ERC20_TRANSFER_TOPIC), _topic(sender), _topic(recipient)],
        "data": HexBytes(amount.to_bytes(32, "big")),
    }


class TestEvmNetwork(IsolatedAsyncioTestCase):
    def setUp(self):
        self.eth = FakeEth()
        self.w3 = SimpleNamespace(eth=self.eth, provider=SimpleNamespace())
        self.network = EvmNetwork("http://localhost:8545", confirmations=6, w3=self.w3)

    def _receipt(self, status=1, block_number=90, logs=None):
        return {
            "status": status,
            "blockNumber": block_number,
            "from": SENDER,
            "logs": logs or [],
        }

    async def test_unknown_transaction_is_pending(self):
        self.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")

        assert await self.network.get_tx_data(TX_HASH, "0x0") is None

    async def test_reverted_transaction_is_final_with_zero_amount(self):
        self.eth.get_transaction_receipt.return_value = self._receipt(status=0)

        data = await self.network.get_tx_data(TX_HASH, TOKEN, RECIPIENT)

        assert data.confirmed
        assert data.amount == 0
        assert data.from_address == ""
        assert data.to == ""
        assert data.token == ""

    async def test_native_transfer(self):
        self.eth.get_transaction_receipt.return_value = self._receipt(block_number=90)
        self.eth.get_transaction.return_value = {
            "from": SENDER,
            "to": RECIPIENT,
            "value": 5 * 10**18,
        }

        data = await self.network.get_tx_data(TX_HASH, "0x0")

        assert data.amount == 5 * 10**18
        assert data.from_address == SENDER
        assert data.to == RECIPIENT
        assert data.confirmed  # 100 - 90 >= 6

    async def test_shallow_transaction_is_unconfirmed(self):
        self.eth.get_transaction_receipt.return_value = self._receipt(block_number=98)
        self.eth.get_transaction.return_value = {"from": SENDER, "to": RECIPIENT, "value": 1}

        data = await self.network.get_tx_data(TX_HASH, "0x0")

        assert not data.confirmed

    async def test_erc20_transfer_is_read_from_logs(self):
        other = "0x" + "55" * 20
        self.eth.get_transaction_receipt.return_value = self._receipt(
            logs=[
                _transfer_log(TOKEN, SENDER, other, 1),
                _transfer_log(TOKEN, SENDER, RECIPIENT, 2500),
            ]
        )

        data = await self.network.get_tx_data(TX_HASH, TOKEN, RECIPIENT)

        assert data.amount == 2500
        assert data.to.lower() == RECIPIENT
        assert data.from_address.lower() == SENDER
        assert data.confirmed

    async def test_erc20_without_matching_transfer_has_zero_amount(self):
        self.eth.get_transaction_receipt.return_value = self._receipt(
            logs=[_transfer_log("0x" + "66" * 20, SENDER, RECIPIENT, 7)]
        )

        data = await self.network.get_tx_data(TX_HASH, TOKEN, RECIPIENT)

        assert data.amount == 0
        assert data.from_address == SENDER

    async def test_decimals_native_and_cached(self):
        token = "0x" + "ab" * 20
        decimals_call = AsyncMock(return_value=6)
        self.eth.contract.return_value.functions.decimals.return_value.call = decimals_call

        assert await self.network.get_decimals("0x0") == 18
        assert await self.network.get_decimals(token) == 6
        assert await self.network.get_decimals("0x" + "AB" * 20) == 6

        decimals_call.assert_awaited_once()

    async def test_transfer_requires_private_key(self):
        with self.assertRaises(NetworkConfigurationError):
            await self.network.transfer("", RECIPIENT, 1, "0x0")

    async def test_native_transfer_signs_and_sends(self):
        tx_hash = await self.network.transfer("0x" + "01" * 32, RECIPIENT, 1000, "0x0")

        assert tx_hash == "0x" + "cd" * 32
        self.eth.get_transaction_count.assert_awaited_once()
        estimate_args = self.eth.estimate_gas.await_args.args[0]
        assert estimate_args["value"] == 1000
        assert "from" in estimate_args
        self.eth.send_raw_transaction.assert_awaited_once()
