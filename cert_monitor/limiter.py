"""
Resizable concurrency limiter for certificate checks.
"""

import asyncio
from types import TracebackType
from typing import Optional, Type

from cert_monitor.logger import get_logger


class ConcurrencyLimiter:
    """
    Counting limiter whose capacity can be changed while in use.

    Holders are counted rather than handed fixed permits, so ``resize`` only
    changes how many new acquisitions may proceed: lowering the capacity
    below the current holder count makes new acquirers wait until enough
    holders have released, raising it wakes waiters immediately.
    """

    def __init__(self, capacity: int, name: str = "limiter"):
        if capacity < 1:
            raise ValueError(f"Limiter capacity must be at least 1, got {capacity}")
        self.name = name
        self._capacity = capacity
        self._in_use = 0
        self._condition: Optional[asyncio.Condition] = None  # created lazily in async context
        self.logger = get_logger("limiter")

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    def _get_condition(self) -> asyncio.Condition:
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    async def acquire(self) -> None:
        """Wait until a slot is free and take it."""
        condition = self._get_condition()
        async with condition:
            await condition.wait_for(lambda: self._in_use < self._capacity)
            self._in_use += 1

    async def release(self) -> None:
        """Return a slot."""
        condition = self._get_condition()
        async with condition:
            if self._in_use <= 0:
                raise RuntimeError(f"{self.name}: release() called without a matching acquire()")
            self._in_use -= 1
            # A woken waiter may be cancelled before it takes the slot
            condition.notify_all()

    async def resize(self, capacity: int) -> None:
        """
        Replace the capacity for subsequent acquisitions.

        Args:
            capacity: New maximum number of concurrent holders
        """
        if capacity < 1:
            raise ValueError(f"Limiter capacity must be at least 1, got {capacity}")
        if capacity == self._capacity:
            return

        condition = self._get_condition()
        async with condition:
            old_capacity = self._capacity
            self._capacity = capacity
            condition.notify_all()

        self.logger.info(
            f"Updating {self.name} max concurrent checks from {old_capacity} to {capacity}"
        )

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await asyncio.shield(self.release())
