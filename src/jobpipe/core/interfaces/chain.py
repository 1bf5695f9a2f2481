from abc import ABC, abstractmethod
from typing import List, Optional

from jobpipe.core.models.payment import TransactionReceipt, TransferEvent


class ChainPort(ABC):
    """Read-only access to the settlement chain for one token contract.

    Implementations raise `ChainQueryError` when the endpoint fails to answer;
    an empty result is not an error.
    """

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain head."""
        pass

    @abstractmethod
    async def get_transfer_events(
        self,
        sender: Optional[str],
        recipient: str,
        from_block: int,
        to_block: int,
    ) -> List[TransferEvent]:
        """Token transfers to `recipient` in the inclusive block range.

        `sender=None` matches transfers from any address.
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt of a mined transaction with its token transfers decoded.

        Returns None when the transaction is unknown or still pending.
        """
        pass
