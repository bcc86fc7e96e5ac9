"""
Tests for CancellationToken.
"""

import asyncio
import time

import pytest

from oaimedia.core.cancellation import CancellationToken


class TestCancellationToken:
    """Test the cooperative cancellation token."""

    @pytest.mark.asyncio
    async def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert repr(token) == "CancellationToken(cancelled=False)"

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled is True

    @pytest.mark.asyncio
    async def test_sleep_runs_full_duration_when_not_cancelled(self):
        token = CancellationToken()
        start = time.monotonic()
        await token.sleep(0.05)
        assert time.monotonic() - start >= 0.04

    @pytest.mark.asyncio
    async def test_sleep_returns_early_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        start = time.monotonic()
        await token.sleep(10)
        assert time.monotonic() - start < 2
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_sleep_skipped_when_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        start = time.monotonic()
        await token.sleep(10)
        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_wait_unblocks_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await asyncio.wait_for(token.wait(), timeout=2)
