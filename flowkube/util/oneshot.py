import asyncio
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class OneShot(Generic[T]):
    """Single-assignment result.

    The first ``resolve``/``reject`` wins; every later call is a no-op that
    returns False. Must be used from the event loop thread.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    async def wait(self) -> T:
        # shield: cancelling a waiter must not settle the shared result
        return await asyncio.shield(self._future)

    def result(self) -> Any:
        return self._future.result()
