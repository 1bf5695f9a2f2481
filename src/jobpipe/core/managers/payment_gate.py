"""Job processor that refuses to run the downstream action before payment.

For phases that settle on chain (by default the `transaction` phase) the
buyer's payment must be proven first, either through a transaction hash the
marketplace already delivered with the job or by waiting for the transfer to
appear. Other phases go straight to the action.

A payment settles exactly one job: the transfer must come from the job's
counterpart, and its hash is refused for any other job afterwards.
"""

from __future__ import annotations

import inspect
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from jobpipe.core.config import PaymentMonitorConfig
from jobpipe.core.exceptions import (
    JobValidationError,
    PaymentTimeoutError,
    PaymentVerificationError,
)
from jobpipe.core.managers.transfer_monitor import TransferMonitor
from jobpipe.core.models.job import job_id_of, job_phase_of
from jobpipe.core.models.payment import is_valid_address
from jobpipe.core.settings import logger

# Downstream action: receives the job and the payment tx hash (None for unpaid phases)
JobAction = Callable[[Any, Optional[str]], Union[Awaitable[Any], Any]]

COUNTERPART_PAYLOAD_KEYS = ("buyer", "buyer_address", "provider_address")


def counterpart_of(job: Any) -> Optional[str]:
    address = getattr(job, "counterpart_address", None)
    if address:
        return address
    payload = getattr(job, "payload", None) or {}
    for key in COUNTERPART_PAYLOAD_KEYS:
        if payload.get(key):
            return payload[key]
    return None


class PaymentGatedProcessor:
    """Async callable usable as the JobQueue processor.

    Args:
        monitor: Transfer monitor watching the service wallet
        action: Downstream work (deployment, delivery...) run once paid
        expected_amount: Service price as a decimal string ("50")
        payment_phases: Job phases that require a payment before the action
        monitor_config: Overrides of the monitor's default polling contract
        max_consumed_payments: How many settled payment hashes are remembered
            to refuse their reuse by another job
    """

    def __init__(
        self,
        monitor: TransferMonitor,
        action: JobAction,
        expected_amount: str = "50",
        payment_phases: Iterable[str] = ("transaction",),
        monitor_config: Optional[PaymentMonitorConfig] = None,
        max_consumed_payments: int = 1000,
    ) -> None:
        self._monitor = monitor
        self._action = action
        self.expected_amount = expected_amount
        self.payment_phases = {phase.lower() for phase in payment_phases}
        self._monitor_config = monitor_config
        self._max_consumed = max_consumed_payments
        # tx hash -> id of the job it paid for, oldest first
        self._consumed: OrderedDict[str, str] = OrderedDict()

    async def __call__(self, job: Any) -> Any:
        job_id = job_id_of(job)
        phase = job_phase_of(job)
        buyer = counterpart_of(job)
        needs_payment = phase in self.payment_phases

        if needs_payment and not buyer:
            raise JobValidationError(
                "Buyer address not found in job", field="counterpart_address", job_id=job_id
            )
        if buyer and not is_valid_address(buyer):
            raise JobValidationError(
                f"Invalid counterpart address {buyer!r}",
                field="counterpart_address",
                value=buyer,
                job_id=job_id,
            )

        payment_tx_hash = await self._collect_payment(job, job_id, buyer) if needs_payment else None

        result = self._action(job, payment_tx_hash)
        if inspect.isawaitable(result):
            result = await result
        logger.info(f"[gate:done] job_id={job_id} phase={phase} payment_tx={payment_tx_hash}")
        return result

    async def _collect_payment(self, job: Any, job_id: str, buyer: str) -> str:
        payload = getattr(job, "payload", None) or {}
        known_hash = payload.get("payment_tx_hash")
        if known_hash:
            self._check_unused(known_hash, job_id)
            verified = await self._monitor.verify_payment_transaction(
                known_hash, self.expected_amount, expected_sender=buyer
            )
            if not verified:
                raise PaymentVerificationError(known_hash, self.expected_amount, job_id=job_id)
            self._consume(known_hash, job_id)
            return known_hash

        overrides = {}
        if self._monitor_config is not None:
            overrides = {
                "timeout": self._monitor_config.timeout,
                "poll_interval": self._monitor_config.poll_interval,
                "confirmations": self._monitor_config.confirmations,
            }
        logger.info(f"[gate:await_payment] job_id={job_id} from={buyer} amount={self.expected_amount}")
        try:
            payment = await self._monitor.monitor_payment(buyer, self.expected_amount, **overrides)
        except PaymentTimeoutError as exc:
            exc.job_id = job_id
            raise
        self._check_unused(payment.hash, job_id)
        self._consume(payment.hash, job_id)
        return payment.hash

    def _check_unused(self, tx_hash: str, job_id: str) -> None:
        # retries of the same job may present the same hash again
        owner = self._consumed.get(tx_hash.lower())
        if owner is not None and owner != job_id:
            logger.warning(f"[gate:reused_payment] job_id={job_id} tx={tx_hash} already paid job_id={owner}")
            raise PaymentVerificationError(
                tx_hash,
                self.expected_amount,
                job_id=job_id,
                reason=f"already used by job {owner}",
            )

    def _consume(self, tx_hash: str, job_id: str) -> None:
        key = tx_hash.lower()
        self._consumed[key] = job_id
        self._consumed.move_to_end(key)
        while len(self._consumed) > self._max_consumed:
            self._consumed.popitem(last=False)
