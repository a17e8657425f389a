from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from ..errors import UpstreamTimeout


T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout_s: float, operation: str) -> T:
    """Await an upstream call, turning a hang into UpstreamTimeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeout(operation, timeout_s) from e
