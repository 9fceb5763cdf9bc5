import asyncio
import functools
from typing import Any, Callable


async def run_blocking(fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking kubernetes client call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
