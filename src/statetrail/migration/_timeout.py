"""
Per-call timeout for store operations.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from statetrail.exceptions import StoreTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], operation: str, timeout_seconds: float) -> T:
    """
    Await a store call, converting a timeout into StoreTimeoutError.

    Args:
        awaitable: The store call.
        operation: Name used in the error message.
        timeout_seconds: Maximum time to wait.

    Returns:
        The store call's result.

    Raises:
        StoreTimeoutError: If the call does not finish in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except TimeoutError as e:
        raise StoreTimeoutError(operation, timeout_seconds) from e
