import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class AsyncOnce(Generic[T]):
    """
    AsyncOnce lazily creates a value exactly once per process.

    The factory runs under a lock and the cell is re-checked after the
    lock is taken, so concurrent first callers all await the same
    creation instead of each running the factory. If the factory
    raises, the cell stays empty and the next caller tries again.
    """

    def __init__(self, factory: "Callable[[], Awaitable[T]]") -> "None":
        self._factory = factory
        self._value: "T | None" = None
        self._initialized: "bool" = False
        self._lock: "asyncio.Lock" = asyncio.Lock()

    @property
    def initialized(self) -> "bool":
        return self._initialized

    async def get(self) -> "T":
        # fast path: already created
        if self._initialized:
            return self._value  # type: ignore[return-value]

        async with self._lock:
            if not self._initialized:
                self._value = await self._factory()
                self._initialized = True

        return self._value  # type: ignore[return-value]

    def reset(self) -> "T | None":
        """
        empties the cell and returns the previous value, if any.
        """
        value, self._value, self._initialized = self._value, None, False
        return value
