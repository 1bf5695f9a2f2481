"""Tests for the payment-gated job processor."""

from unittest.mock import AsyncMock, Mock

import pytest

from jobpipe.core.config import PaymentMonitorConfig
from jobpipe.core.exceptions import (
    JobValidationError,
    PaymentTimeoutError,
    PaymentVerificationError,
)
from jobpipe.core.managers.payment_gate import PaymentGatedProcessor
from jobpipe.core.models.job import MarketplaceJob
from jobpipe.core.models.payment import PaymentTransaction

BUYER = "0x" + "b" * 40
OTHER_BUYER = "0x" + "c" * 40
TX = "0x" + "1" * 64


@pytest.fixture
def monitor():
    monitor = Mock()
    monitor.monitor_payment = AsyncMock(
        return_value=PaymentTransaction(
            hash=TX, block_number=10, amount="50", from_address=BUYER, to_address="0x" + "a" * 40
        )
    )
    monitor.verify_payment_transaction = AsyncMock(return_value=True)
    return monitor


@pytest.fixture
def action():
    return AsyncMock(return_value="deployed")


class TestPaymentGatedProcessor:
    @pytest.mark.asyncio
    async def test_transaction_phase_waits_for_payment(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action, expected_amount="50")
        job = MarketplaceJob(id=1, phase="transaction", counterpart_address=BUYER)

        assert await gate(job) == "deployed"
        monitor.monitor_payment.assert_awaited_once_with(BUYER, "50")
        action.assert_awaited_once_with(job, TX)

    @pytest.mark.asyncio
    async def test_buyer_read_from_payload(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(id=1, phase="transaction", payload={"buyer": BUYER})

        await gate(job)

        assert monitor.monitor_payment.await_args.args[0] == BUYER

    @pytest.mark.asyncio
    async def test_known_payment_hash_is_verified_instead_of_polled(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action, expected_amount="50")
        job = MarketplaceJob(
            id=1, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX}
        )

        await gate(job)

        monitor.verify_payment_transaction.assert_awaited_once_with(TX, "50", expected_sender=BUYER)
        monitor.monitor_payment.assert_not_awaited()
        action.assert_awaited_once_with(job, TX)

    @pytest.mark.asyncio
    async def test_invalid_known_payment_fails_terminally(self, monitor, action):
        monitor.verify_payment_transaction.return_value = False
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(
            id=1, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX}
        )

        with pytest.raises(PaymentVerificationError):
            await gate(job)
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unpaid_phase_skips_payment(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(id=1, phase="negotiation")

        await gate(job)

        monitor.monitor_payment.assert_not_awaited()
        action.assert_awaited_once_with(job, None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"buyer": "0x1234"}])
    async def test_missing_or_malformed_buyer_is_rejected(self, monitor, action, payload):
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(id=1, phase="transaction", payload=payload)

        with pytest.raises(JobValidationError):
            await gate(job)
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payment_timeout_carries_job_id(self, monitor, action):
        monitor.monitor_payment.side_effect = PaymentTimeoutError(
            sender=BUYER, expected_amount="50", elapsed_seconds=1.0, timeout_seconds=1.0
        )
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(id=8, phase="transaction", counterpart_address=BUYER)

        with pytest.raises(PaymentTimeoutError) as exc_info:
            await gate(job)
        assert exc_info.value.job_id == "8"

    @pytest.mark.asyncio
    async def test_monitor_config_overrides_are_forwarded(self, monitor, action):
        config = PaymentMonitorConfig(timeout=60, poll_interval=1, confirmations=2)
        gate = PaymentGatedProcessor(monitor, action, monitor_config=config)
        job = MarketplaceJob(id=1, phase="transaction", counterpart_address=BUYER)

        await gate(job)

        kwargs = monitor.monitor_payment.await_args.kwargs
        assert kwargs == {"timeout": 60, "poll_interval": 1, "confirmations": 2}

    @pytest.mark.asyncio
    async def test_sync_action_is_supported(self, monitor):
        gate = PaymentGatedProcessor(monitor, lambda job, tx: f"done {job.id}")
        job = MarketplaceJob(id=3, phase="request")

        assert await gate(job) == "done 3"

    @pytest.mark.asyncio
    async def test_known_payment_hash_cannot_unlock_a_second_job(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action)
        first = MarketplaceJob(
            id=1, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX}
        )
        second = MarketplaceJob(
            id=2, phase="transaction", counterpart_address=OTHER_BUYER, payload={"payment_tx_hash": TX}
        )

        await gate(first)
        with pytest.raises(PaymentVerificationError) as exc_info:
            await gate(second)

        assert exc_info.value.job_id == "2"
        assert "already used by job 1" in exc_info.value.message
        action.assert_awaited_once_with(first, TX)

    @pytest.mark.asyncio
    async def test_retry_of_same_job_may_present_its_hash_again(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action)
        job = MarketplaceJob(
            id=1, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX}
        )

        await gate(job)
        await gate(job)

        assert action.await_count == 2

    @pytest.mark.asyncio
    async def test_observed_payment_is_not_reusable(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action)
        await gate(MarketplaceJob(id=1, phase="transaction", counterpart_address=BUYER))

        reused = MarketplaceJob(
            id=2, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX}
        )
        with pytest.raises(PaymentVerificationError):
            await gate(reused)
        monitor.verify_payment_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_consumed_hashes_are_bounded(self, monitor, action):
        gate = PaymentGatedProcessor(monitor, action, max_consumed_payments=1)
        other_tx = "0x" + "2" * 64

        for job_id, tx_hash in ((1, TX), (2, other_tx)):
            await gate(
                MarketplaceJob(
                    id=job_id, phase="transaction", counterpart_address=BUYER,
                    payload={"payment_tx_hash": tx_hash},
                )
            )

        # the oldest hash was forgotten, so only the chain check guards it now
        await gate(
            MarketplaceJob(id=3, phase="transaction", counterpart_address=BUYER, payload={"payment_tx_hash": TX})
        )
        assert action.await_count == 3
