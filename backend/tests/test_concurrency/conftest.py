"""
Concurrency test fixtures

Helpers for running many detections through the pipeline at once.
"""
import asyncio
from typing import Any, Coroutine, List

import pytest


@pytest.fixture
def run_concurrent():
    """
    Helper fixture to run multiple async tasks concurrently.

    Usage:
        results = await run_concurrent([task1(), task2(), task3()])

    Returns list of results or exceptions for each task.
    """
    async def _run_concurrent(
        tasks: List[Coroutine],
        timeout: float = 10.0
    ) -> List[Any]:
        return await asyncio.wait_for(
            asyncio.gather(*tasks, return_exceptions=True),
            timeout=timeout
        )
    return _run_concurrent
