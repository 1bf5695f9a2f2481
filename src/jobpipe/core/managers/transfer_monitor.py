"""TransferMonitor: waits for an exact token payment to show up on chain.

Polls `ChainPort` for `Transfer` events from an expected payer to the
configured recipient. A transfer only counts when its value equals the
expected amount exactly (in token base units) and it is buried under at
least `confirmations` blocks. Everything else is "no match yet".
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from jobpipe.core.config import PaymentMonitorConfig
from jobpipe.core.exceptions import PaymentTimeoutError
from jobpipe.core.interfaces.chain import ChainPort
from jobpipe.core.interfaces.retry import RetryPort
from jobpipe.core.models.payment import (
    PaymentTransaction,
    TransferEvent,
    format_units,
    same_address,
    to_base_units,
)
from jobpipe.core.settings import logger


class TransferMonitor:
    """Payment detection and verification against one recipient address.

    Attributes:
        recipient_address: Address the payments must be sent to
        config: Default polling contract (timeout, poll interval, confirmations)
        token_decimals: Precision of the token (USDC: 6)
    """

    def __init__(
        self,
        chain: ChainPort,
        recipient_address: str,
        config: Optional[PaymentMonitorConfig] = None,
        token_decimals: int = 6,
        retry_port: Optional[RetryPort] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._chain = chain
        self.recipient_address = recipient_address
        self.config = config or PaymentMonitorConfig()
        self.token_decimals = token_decimals
        self._retry = retry_port
        self._sleep = sleep
        logger.info(
            f"[payment:init] recipient={recipient_address} decimals={token_decimals} "
            f"timeout={self.config.timeout}s confirmations={self.config.confirmations}"
        )

    async def monitor_payment(
        self,
        expected_sender: str,
        expected_amount: str = "50",
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        confirmations: Optional[int] = None,
    ) -> PaymentTransaction:
        """Poll until a matching, confirmed transfer appears.

        Only blocks from the first observed chain head onwards are searched;
        payments sent before monitoring started are not picked up (use
        `verify_payment_transaction` with a known hash for those).

        Raises:
            PaymentTimeoutError: no match within `timeout` seconds
            ValueError: `expected_amount` is not representable at token precision
        """
        timeout = self.config.timeout if timeout is None else timeout
        poll_interval = self.config.poll_interval if poll_interval is None else poll_interval
        confirmations = self.config.confirmations if confirmations is None else confirmations
        expected_value = to_base_units(expected_amount, self.token_decimals)

        logger.info(
            f"[payment:monitor] from={expected_sender} to={self.recipient_address} "
            f"amount={expected_amount} timeout={timeout}s confirmations={confirmations}"
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        cursor: Optional[int] = None

        while loop.time() - started < timeout:
            try:
                head = await self._chain.get_block_number()
                if cursor is None:
                    cursor = head
                    logger.debug(f"[payment:monitor] start_block={cursor}")

                if head >= cursor:
                    events = await self._chain.get_transfer_events(
                        expected_sender, self.recipient_address, cursor, head
                    )
                    match = self._find_match(
                        events, expected_sender, expected_value, head, confirmations
                    )
                    if match is not None:
                        payment = self._to_payment(match)
                        logger.info(
                            f"[payment:found] tx={payment.hash} block={payment.block_number} "
                            f"amount={payment.amount} from={payment.from_address}"
                        )
                        return payment
                    # blocks up to head - confirmations have been judged with full depth
                    cursor = max(cursor, head - confirmations + 1)
            except Exception as exc:
                logger.warning(f"[payment:poll_error] from={expected_sender} error={exc}")

            remaining = timeout - (loop.time() - started)
            if remaining <= 0:
                break
            await self._sleep(min(poll_interval, remaining))

        elapsed = loop.time() - started
        logger.warning(
            f"[payment:timeout] from={expected_sender} amount={expected_amount} "
            f"elapsed={elapsed:.1f}s timeout={timeout}s"
        )
        raise PaymentTimeoutError(
            sender=expected_sender,
            expected_amount=str(expected_amount),
            elapsed_seconds=elapsed,
            timeout_seconds=timeout,
        )

    async def verify_payment_transaction(
        self,
        tx_hash: str,
        expected_amount: str = "50",
        expected_sender: Optional[str] = None,
    ) -> bool:
        """Check that a known transaction paid `expected_amount` to the recipient.

        With `expected_sender` the matching transfer must also come from that
        address. Never raises; lookup errors, failed or unknown transactions and
        receipts without a matching transfer all yield False.
        """
        logger.info(f"[payment:verify] tx={tx_hash} amount={expected_amount} from={expected_sender}")
        try:
            expected_value = to_base_units(expected_amount, self.token_decimals)
            receipt = await self._call(self._chain.get_transaction_receipt, tx_hash)
        except Exception as exc:
            logger.error(f"[payment:verify] tx={tx_hash} lookup failed error={exc}")
            return False

        if receipt is None:
            logger.warning(f"[payment:verify] tx={tx_hash} not found")
            return False
        if not receipt.succeeded:
            logger.warning(f"[payment:verify] tx={tx_hash} reverted status={receipt.status}")
            return False

        for transfer in receipt.transfers:
            if expected_sender is not None and not same_address(transfer.from_address, expected_sender):
                continue
            if same_address(transfer.to_address, self.recipient_address) and transfer.value == expected_value:
                logger.info(f"[payment:verify] tx={tx_hash} verified")
                return True

        logger.warning(f"[payment:verify] tx={tx_hash} has no matching transfer to recipient")
        return False

    async def get_recent_payments(self, block_range: int = 1000) -> List[PaymentTransaction]:
        """Transfers to the recipient from any sender within the last `block_range` blocks."""
        try:
            head = await self._call(self._chain.get_block_number)
            from_block = max(0, head - block_range)
            events = await self._call(
                self._chain.get_transfer_events, None, self.recipient_address, from_block, head
            )
        except Exception as exc:
            logger.error(f"[payment:recent] lookup failed error={exc}")
            return []
        return [self._to_payment(event) for event in events]

    # ------------------------------------------------------------------
    def _find_match(
        self,
        events: Iterable[TransferEvent],
        expected_sender: str,
        expected_value: int,
        head: int,
        confirmations: int,
    ) -> Optional[TransferEvent]:
        for event in events:
            if not same_address(event.from_address, expected_sender):
                continue
            if not same_address(event.to_address, self.recipient_address):
                continue
            if event.value != expected_value:
                logger.debug(
                    f"[payment:mismatch] tx={event.transaction_hash} "
                    f"amount={format_units(event.value, self.token_decimals)}"
                )
                continue
            depth = head - event.block_number
            if depth >= confirmations:
                return event
            logger.debug(
                f"[payment:pending] tx={event.transaction_hash} "
                f"confirmations={depth}/{confirmations}"
            )
        return None

    def _to_payment(self, event: TransferEvent) -> PaymentTransaction:
        return PaymentTransaction(
            hash=event.transaction_hash,
            block_number=event.block_number,
            amount=format_units(event.value, self.token_decimals),
            from_address=event.from_address,
            to_address=event.to_address,
        )

    async def _call(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._retry is None:
            return await func(*args)
        return await self._retry.execute(func, *args)
