"""
TTL Cache with Single-Flight Refresh

Serves a cached value per key and refreshes it from a caller supplied async
fetch function once the value is older than its TTL. While a refresh is in
flight, every other caller asking for the same key joins that refresh
instead of starting its own (stampede prevention).

Refresh outcomes:
    - non-empty result: replaces the entry (fetched_at=now, expires_at=now+ttl)
    - empty result (None, or anything with len() == 0): previous entry kept,
      waiters get the previous value if there is one
    - failure: previous entry kept, error raised to every waiter of that
      refresh and never cached; the next call retries

Usage:
    cache = TTLSingleFlightCache(name="marketCap")

    async def fetch_tickers():
        return await client.get_json("/tickers")

    tickers = await cache.get_or_refresh("tickers", ttl=900, fetch=fetch_tickers)

Concurrency:
    Designed for a single asyncio event loop. State for a key is only
    mutated in synchronous sections (no await in between), which makes
    installing/clearing the pending refresh atomic with respect to other
    coroutines.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

from gateway_core.logging import get_logger

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """
    Immutable cached value.

    Attributes:
        value: Cached value
        fetched_at: Clock reading when the value was fetched
        expires_at: Clock reading after which the value is stale
    """

    value: V
    fetched_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

    def age(self, now: float) -> float:
        return now - self.fetched_at


@dataclass
class CacheState(Generic[V]):
    """Per-key state. At most one pending refresh exists per key."""

    entry: Optional[CacheEntry[V]] = None
    pending_refresh: Optional["asyncio.Task[V]"] = None


def is_empty_result(value: Any) -> bool:
    """Return True for None and for any sized value of length 0."""
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


def _retrieve_exception(task: "asyncio.Task") -> None:
    # waiters may all have been cancelled; mark the failure as seen
    if not task.cancelled():
        task.exception()


class TTLSingleFlightCache(Generic[V]):
    """
    Keyed TTL cache whose refreshes are coalesced per key.

    Args:
        name: Name used in log messages
        clock: Monotonic clock in seconds (defaults to time.monotonic)
        serve_stale_on_error: When True and a previous entry exists, waiters
                              of a failed refresh receive the previous value
                              instead of the error

    Example:
        >>> cache = TTLSingleFlightCache(name="fx")
        >>> rates = await cache.get_or_refresh("USD", ttl=43200, fetch=load_rates)
        >>> cache.peek("USD").fetched_at
        12345.6
    """

    def __init__(
        self,
        name: str = "cache",
        clock: Optional[Callable[[], float]] = None,
        serve_stale_on_error: bool = False
    ):
        self.name = name
        self._clock = clock or time.monotonic
        self._serve_stale_on_error = serve_stale_on_error
        self._states: Dict[Hashable, CacheState[V]] = {}
        self._logger = get_logger(__name__)

    # ============================================
    # Main Operation
    # ============================================

    async def get_or_refresh(
        self,
        key: Hashable,
        ttl: float,
        fetch: Callable[[], Awaitable[V]],
        force_refresh: bool = False
    ) -> V:
        """
        Return the cached value for key, refreshing it if needed.

        Args:
            key: Cache key
            ttl: Time-to-live (seconds) applied if this call's refresh succeeds
            fetch: Zero-argument coroutine function producing a fresh value
            force_refresh: Ignore a fresh entry and refresh anyway

        Returns:
            The fresh value, the refreshed value, or (for empty refreshes)
            the previous value

        Raises:
            Whatever fetch raised, unchanged, for every waiter of the failed refresh
        """
        state = self._states.get(key)
        if state is None:
            state = CacheState()
            self._states[key] = state

        now = self._clock()
        if not force_refresh and state.entry is not None and state.entry.is_fresh(now):
            self._logger.debug(f"[{self.name}] cache hit for {key!r}")
            return state.entry.value

        if state.pending_refresh is None:
            self._logger.debug(f"[{self.name}] refreshing {key!r}")
            state.pending_refresh = asyncio.ensure_future(self._refresh(key, state, ttl, fetch))
            state.pending_refresh.add_done_callback(_retrieve_exception)
        else:
            self._logger.debug(f"[{self.name}] joining pending refresh for {key!r}")

        # a waiter being cancelled must not cancel the shared refresh
        return await asyncio.shield(state.pending_refresh)

    async def _refresh(
        self,
        key: Hashable,
        state: CacheState[V],
        ttl: float,
        fetch: Callable[[], Awaitable[V]]
    ) -> V:
        # Every exit path clears pending_refresh before the task settles,
        # so waiters always resume after the key is free again
        try:
            value = await fetch()
        except Exception as e:
            state.pending_refresh = None
            previous = state.entry
            if self._serve_stale_on_error and previous is not None:
                self._logger.error(
                    f"[{self.name}] refresh failed for {key!r}, serving stale value: {e}"
                )
                return previous.value
            self._logger.error(f"[{self.name}] refresh failed for {key!r}: {e}")
            raise
        except BaseException:
            state.pending_refresh = None
            raise

        state.pending_refresh = None
        if is_empty_result(value):
            self._logger.warning(f"[{self.name}] refresh returned no data for {key!r}, keeping previous entry")
            if state.entry is not None:
                return state.entry.value
            return value

        now = self._clock()
        state.entry = CacheEntry(value=value, fetched_at=now, expires_at=now + ttl)
        self._logger.info(f"[{self.name}] refreshed {key!r} (ttl={ttl}s)")
        return value

    # ============================================
    # Housekeeping
    # ============================================

    def peek(self, key: Hashable) -> Optional[CacheEntry[V]]:
        """Return the current entry for key, fresh or not (None if never fetched)."""
        state = self._states.get(key)
        return state.entry if state else None

    def is_fresh(self, key: Hashable) -> bool:
        entry = self.peek(key)
        return entry is not None and entry.is_fresh(self._clock())

    def pending(self, key: Hashable) -> bool:
        """Return True if a refresh is currently in flight for key."""
        state = self._states.get(key)
        return state is not None and state.pending_refresh is not None

    def invalidate(self, key: Hashable) -> bool:
        """
        Evict the entry for key.

        A refresh already in flight is left running; its waiters still get
        its outcome and a successful result is stored again.

        Returns:
            True if an entry was removed
        """
        state = self._states.get(key)
        if state is None or state.entry is None:
            return False
        state.entry = None
        if state.pending_refresh is None:
            del self._states[key]
        self._logger.debug(f"[{self.name}] invalidated {key!r}")
        return True

    def clear(self) -> None:
        """Evict every entry (pending refreshes keep running)."""
        for key in list(self._states.keys()):
            self.invalidate(key)

    def keys(self) -> List[Hashable]:
        return [key for key, state in self._states.items() if state.entry is not None]

    def __len__(self) -> int:
        return len(self.keys())

    def __repr__(self) -> str:
        return f"<TTLSingleFlightCache(name={self.name!r}, entries={len(self)})>"
