"""
Shared fixtures for unit tests.

FakeClock replaces time for the cache and the rate limiter so TTL and
pacing tests are deterministic.
"""

import pytest


class FakeClock:
    """
    Manually driven clock.

    Calling the instance returns the current time. sleep() jumps the clock
    to the end of the requested delay without yielding to the event loop,
    so the sleeping coroutine resumes before any other task observes the
    clock.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()
