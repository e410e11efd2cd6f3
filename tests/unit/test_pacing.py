"""Tests for randomized pauses between pages."""

from unittest.mock import AsyncMock, patch

from crawler.fetch.pacing import random_sleep


class TestRandomSleep:
    async def test_within_bounds(self) -> None:
        with patch("crawler.fetch.pacing.asyncio.sleep", new=AsyncMock()) as sleep:
            duration = await random_sleep(1.0, 2.0)
        assert 1.0 <= duration <= 2.0
        sleep.assert_awaited_once_with(duration)

    async def test_max_below_min_uses_min(self) -> None:
        with patch("crawler.fetch.pacing.asyncio.sleep", new=AsyncMock()):
            assert await random_sleep(3.0, 1.0) == 3.0

    async def test_negative_floor_clamped(self) -> None:
        with patch("crawler.fetch.pacing.asyncio.sleep", new=AsyncMock()):
            assert await random_sleep(-5.0, 0.0) == 0.0
