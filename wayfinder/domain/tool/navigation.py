from typing import Awaitable, Callable, Optional, TypeVar
import asyncio

from wayfinder.domain.errors import NavigationTimeoutError

T = TypeVar("T")


async def wait_until(
    check: Callable[[], Awaitable[Optional[T]]],
    timeout: float = 10.0,
    interval: float = 0.5,
    description: str = "condition"
) -> T:
    """Poll check until it returns a truthy value or the timeout elapses

    The check runs once immediately and then every interval seconds. Errors
    raised by the check propagate. Cancelling the awaiting task stops polling.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        value = await check()
        if value:
            return value
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise NavigationTimeoutError(f"Timed out after {timeout}s waiting for {description}")
        await asyncio.sleep(min(interval, remaining))
