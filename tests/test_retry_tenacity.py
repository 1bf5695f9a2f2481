"""Tests for the tenacity-backed RetryPort adapter."""

from unittest.mock import AsyncMock

import pytest

from jobpipe.adapters.retry_tenacity import TenacityRetryAdapter
from jobpipe.core.exceptions import ChainQueryError


@pytest.fixture
def retry():
    return TenacityRetryAdapter(attempts=3, wait_initial=0, wait_max=0)


class TestTenacityRetryAdapter:
    @pytest.mark.asyncio
    async def test_retries_chain_errors_until_success(self, retry):
        func = AsyncMock(side_effect=[ChainQueryError("down"), ChainQueryError("down"), 123])

        assert await retry.execute(func, "0xabc") == 123
        assert func.await_count == 3
        func.assert_awaited_with("0xabc")

    @pytest.mark.asyncio
    async def test_reraises_after_exhaustion(self, retry):
        func = AsyncMock(side_effect=ChainQueryError("down"))

        with pytest.raises(ChainQueryError):
            await retry.execute(func)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, retry):
        func = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await retry.execute(func)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_call_time_overrides(self, retry):
        func = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await retry.execute(func, attempts=2, exception_types=(ValueError,))
        assert func.await_count == 2
