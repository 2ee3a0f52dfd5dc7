"""
Store call guard

Every shared store call made by the resilience primitives goes through
`guarded_call`, which bounds it with the configured operation timeout and
normalizes failures to StoreUnavailableError. Each primitive then applies its
own failure direction (limiter admits, lock refuses).
"""

import asyncio
from typing import Awaitable, TypeVar

from sms_delivery.core.exceptions import StoreError, StoreTimeoutError, StoreUnavailableError

T = TypeVar("T")


async def guarded_call(operation: Awaitable[T], timeout: float, name: str, key: str | None = None) -> T:
    """
    Await a store operation with a timeout.

    Args:
        operation: Store coroutine
        timeout: Seconds before giving up
        name: Operation name for error details
        key: Store key for error details

    Raises:
        StoreTimeoutError: The call outlasted `timeout`
        StoreUnavailableError: The store failed the call
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreTimeoutError(
            f"Store operation '{name}' timed out after {timeout}s",
            details={"operation": name, "key": key, "timeout": timeout},
        ) from e
    except StoreUnavailableError:
        raise
    except StoreError as e:
        raise StoreUnavailableError.from_exception(e, operation=name, key=key) from e
    except OSError as e:
        raise StoreUnavailableError.from_exception(e, operation=name, key=key) from e
