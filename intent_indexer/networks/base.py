from abc import ABC, abstractmethod
from typing import Optional

from intent_indexer.constants import NATIVE_TOKEN
from intent_indexer.model import TransactionData


def is_native_token(token_address: str) -> bool:
    return token_address.lower() == NATIVE_TOKEN


class Network(ABC):
    """
    Chain I/O used by the order-processing workers.

    get_tx_data distinguishes three outcomes:
      * None: the transaction is not known yet, look again later.
      * confirmed=False: found, but not deep enough yet.
      * confirmed=True: final. A reverted transaction is reported as
        TransactionData.failed(), zero amount and confirmed=True.

    transfer returns once the chain adapter has a handle for the
    transaction; that handle does not imply finality.
    """

    retry_delay: float

    @abstractmethod
    async def get_decimals(self, token_address: str) -> int:
        pass

    @abstractmethod
    async def get_tx_data(
        self,
        tx_hash: str,
        token_address: str,
        recipient_address: Optional[str] = None,
    ) -> Optional[TransactionData]:
        pass

    @abstractmethod
    async def transfer(
        self, private_key: str, to: str, amount: int, token_address: str
    ) -> str:
        pass

    async def close(self) -> None:
        pass
