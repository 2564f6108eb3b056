"""Unit tests for CycleScheduler."""

import asyncio

import pytest

from price_oracle.src.CycleScheduler import CycleScheduler


class TestCycleScheduler:
    """Test the single cancelable timer."""

    @pytest.mark.asyncio
    async def test_fires_callback(self) -> None:
        """The callback runs once the delay elapses."""
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        scheduler = CycleScheduler(callback)
        scheduler.arm(0.01)
        assert scheduler.armed

        await asyncio.wait_for(fired.wait(), timeout=1.0)
        assert not scheduler.armed
        assert scheduler.task is not None

    @pytest.mark.asyncio
    async def test_cancel(self) -> None:
        """A cancelled timer never fires."""
        calls = []

        async def callback() -> None:
            calls.append(1)

        scheduler = CycleScheduler(callback)
        scheduler.arm(0.01)
        scheduler.cancel()
        await asyncio.sleep(0.05)

        assert calls == []
        assert not scheduler.armed

    @pytest.mark.asyncio
    async def test_rearm_replaces_timer(self) -> None:
        """Arming again leaves only one pending timer."""
        calls = []

        async def callback() -> None:
            calls.append(1)

        scheduler = CycleScheduler(callback)
        scheduler.arm(0.01)
        scheduler.arm(0.02)
        await asyncio.sleep(0.1)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_negative_delay_fires_immediately(self) -> None:
        """Overdue timers fire on the next loop iteration."""
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        scheduler = CycleScheduler(callback)
        scheduler.arm(-5.0)
        await asyncio.wait_for(fired.wait(), timeout=1.0)

    def test_cancel_when_idle(self) -> None:
        """Cancelling with nothing armed is a no-op."""

        async def callback() -> None:
            pass

        scheduler = CycleScheduler(callback)
        scheduler.cancel()
        assert not scheduler.armed
