"""Randomized pauses between consecutive requests to the same source."""

import asyncio
import logging
import random

logger = logging.getLogger(__name__)


async def random_sleep(min_s: float, max_s: float) -> float:
    """Sleep for a random duration between min_s and max_s seconds.

    min_s is the floor (never below zero). If max_s < min_s, max_s is raised
    to min_s. Returns the actual sleep duration.
    """
    floor = max(min_s, 0.0)
    ceiling = max(max_s, floor)
    duration = random.uniform(floor, ceiling)
    logger.debug("Pausing %.2fs before next page", duration)
    await asyncio.sleep(duration)
    return duration
