"""
Rate Limiter

Paces the dispatch of operations towards one upstream endpoint so that,
across all callers, consecutive dispatches are at least
floor(delay * 1000 / count) milliseconds apart.

For a rate limit of 20 requests / second use count=20, delay=1.
For a rate limit of 1 request / 10 seconds use count=1, delay=10.

The limiter only decides *when* an operation may start. Once started,
operations may overlap freely unless max_concurrent is set. Nothing is ever
rejected: an operation whose slot has not arrived yet simply waits.

Usage:
    limiter = RateLimiter.from_rate(count=5, delay=1, name="binance-public")

    data = await limiter.schedule(lambda: client.get_json("/ticker"))

    @limiter.wrap
    async def fetch_orderbook(pair):
        ...
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from gateway_core.logging import get_logger

R = TypeVar("R")


@dataclass(frozen=True)
class RateLimiterState:
    """Snapshot of a limiter's scheduling state (times in clock seconds)."""

    capacity: Optional[int]
    min_interval_ms: int
    next_available_at: float


class RateLimiter:
    """
    Timestamp based dispatch gate.

    Each schedule() call reserves the next free slot synchronously
    (first come, first served) and moves next_available_at forward by the
    minimum interval, then waits for its slot.

    Args:
        min_interval_ms: Minimum spacing between two dispatches
        max_concurrent: Optional bound on operations running at the same time
        name: Name used in log messages
        capacity: Requests per window this limiter was built from (informational)
        clock: Clock in seconds (defaults to the running event loop's clock)
        sleep: Coroutine function used to wait (defaults to asyncio.sleep)
    """

    def __init__(
        self,
        min_interval_ms: int = 0,
        max_concurrent: Optional[int] = None,
        name: str = "limiter",
        capacity: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        if min_interval_ms < 0:
            raise ValueError(f"min_interval_ms cannot be negative (got {min_interval_ms})")
        if max_concurrent is not None and max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1 (got {max_concurrent})")

        self.name = name
        self.capacity = capacity
        self.min_interval_ms = int(min_interval_ms)
        self.max_concurrent = max_concurrent
        self._interval = self.min_interval_ms / 1000.0
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._next_available_at = 0.0
        self.scheduled = 0
        self.dispatched = 0
        self._logger = get_logger(__name__)

    @classmethod
    def from_rate(cls, count: int, delay: float = 1, **kwargs) -> "RateLimiter":
        """
        Build a limiter allowing `count` operations every `delay` seconds.

        Example:
            >>> RateLimiter.from_rate(1, 2).min_interval_ms
            2000
            >>> RateLimiter.from_rate(3, 1).min_interval_ms
            333
        """
        if count <= 0:
            raise ValueError(f"count must be positive (got {count})")
        if delay < 0:
            raise ValueError(f"delay cannot be negative (got {delay})")
        return cls(min_interval_ms=int((delay * 1000.0) / count), capacity=count, **kwargs)

    # ============================================
    # Scheduling
    # ============================================

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def _reserve_slot(self) -> float:
        """Reserve the next dispatch slot and return how long to wait for it."""
        now = self._now()
        slot = max(now, self._next_available_at)
        self._next_available_at = slot + self._interval
        return slot - now

    async def _dispatch(self, operation: Callable[[], Awaitable[R]]) -> R:
        wait = self._reserve_slot()
        if wait > 0:
            self._logger.debug(f"[{self.name}] delaying operation by {wait:.3f}s")
            await self._sleep(wait)
        self.dispatched += 1
        return await operation()

    async def schedule(self, operation: Callable[..., Awaitable[R]], *args, **kwargs) -> R:
        """
        Run operation once its dispatch slot arrives.

        Args:
            operation: Coroutine function to run
            *args, **kwargs: Passed to operation

        Returns:
            Whatever operation returns

        Raises:
            Whatever operation raises (the pacing state is not affected)
        """
        self.scheduled += 1
        if args or kwargs:
            operation = functools.partial(operation, *args, **kwargs)

        if self.max_concurrent is None:
            return await self._dispatch(operation)

        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        # reserve the slot only once allowed to run, so spacing holds for bounded limiters too
        async with self._semaphore:
            return await self._dispatch(operation)

    def wrap(self, func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        """Decorator scheduling every call of func through this limiter."""

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.schedule(func, *args, **kwargs)

        return wrapper

    # ============================================
    # Introspection
    # ============================================

    @property
    def next_available_at(self) -> float:
        return self._next_available_at

    def snapshot(self) -> RateLimiterState:
        return RateLimiterState(
            capacity=self.capacity,
            min_interval_ms=self.min_interval_ms,
            next_available_at=self._next_available_at
        )

    def __repr__(self) -> str:
        return (
            f"<RateLimiter(name={self.name!r}, min_interval_ms={self.min_interval_ms}, "
            f"max_concurrent={self.max_concurrent})>"
        )
