import asyncio
from typing import Any, Awaitable, List, Mapping, Optional

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from jobpipe.core.exceptions import ChainQueryError
from jobpipe.core.interfaces.chain import ChainPort
from jobpipe.core.models.payment import TransactionReceipt, TransferEvent, same_address
from jobpipe.core.settings import logger

# Only the ERC-20 Transfer event is needed
TRANSFER_EVENT_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "from", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    }
]


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


def decode_transfer(event: Mapping[str, Any]) -> TransferEvent:
    """Turn a web3 `Transfer` event (AttributeDict) into a TransferEvent."""
    args = event["args"]
    return TransferEvent(
        transaction_hash=_to_hex(event["transactionHash"]),
        block_number=int(event["blockNumber"]),
        from_address=args["from"],
        to_address=args["to"],
        value=int(args["value"]),
        token_address=event.get("address"),
    )


class Web3ChainAdapter(ChainPort):
    """ChainPort over a JSON-RPC endpoint using web3.py's async client.

    All RPC failures are translated into `ChainQueryError` so the core only
    ever sees domain errors. Use as an async context manager (or call
    `close`) to release the provider's HTTP session.
    """

    def __init__(self, rpc_url: str, token_address: str, request_timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.token_address = Web3.to_checksum_address(token_address)
        provider = AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)},
        )
        self._w3 = AsyncWeb3(provider)
        self._token = self._w3.eth.contract(address=self.token_address, abi=TRANSFER_EVENT_ABI)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        await self._w3.provider.disconnect()

    async def get_block_number(self) -> int:
        return int(await self._query("eth_blockNumber", self._w3.eth.block_number))

    async def get_transfer_events(
        self,
        sender: Optional[str],
        recipient: str,
        from_block: int,
        to_block: int,
    ) -> List[TransferEvent]:
        argument_filters = {"to": Web3.to_checksum_address(recipient)}
        if sender is not None:
            argument_filters["from"] = Web3.to_checksum_address(sender)
        events = await self._query(
            "eth_getLogs",
            self._token.events.Transfer.get_logs(
                argument_filters=argument_filters,
                from_block=from_block,
                to_block=to_block,
            ),
        )
        logger.debug(
            f"[chain:logs] from_block={from_block} to_block={to_block} "
            f"sender={sender} events={len(events)}"
        )
        return [decode_transfer(event) for event in events]

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        try:
            receipt = await self._query(
                "eth_getTransactionReceipt", self._w3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None

        # logs that do not decode as Transfer (other events, other ABIs) are discarded
        decoded = self._token.events.Transfer().process_receipt(receipt, errors=DISCARD)
        transfers = [
            decode_transfer(event)
            for event in decoded
            if same_address(event.get("address"), self.token_address)
        ]
        return TransactionReceipt(
            transaction_hash=_to_hex(receipt["transactionHash"]),
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            transfers=transfers,
        )

    async def _query(self, operation: str, call: Awaitable[Any]) -> Any:
        """Await an RPC call, translating library errors into ChainQueryError."""
        try:
            return await call
        except TransactionNotFound:
            raise
        except asyncio.TimeoutError:
            logger.error(f"[chain:timeout] operation={operation} rpc={self.rpc_url}")
            raise ChainQueryError(f"{operation} timed out", operation=operation)
        except aiohttp.ClientError as exc:
            logger.error(f"[chain:connection] operation={operation} rpc={self.rpc_url} error={exc}")
            raise ChainQueryError(
                f"{operation} connection error", operation=operation, diagnostic=str(exc)
            ) from exc
        except Web3Exception as exc:
            logger.error(f"[chain:rpc_error] operation={operation} error={exc}")
            raise ChainQueryError(
                f"{operation} failed", operation=operation, diagnostic=str(exc)
            ) from exc
        except Exception as exc:
            logger.error(f"[chain:unexpected] operation={operation} error={exc}")
            raise ChainQueryError(
                f"{operation} unexpected error", operation=operation, diagnostic=str(exc)
            ) from exc
