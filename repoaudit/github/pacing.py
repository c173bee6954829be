"""Outbound request pacing shared by every GitHub client in the process."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import time
from typing import TypeVar

from repoaudit.config import load_config
from repoaudit.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class RequestPacer:
    """Enforce a minimum spacing between outbound requests.

    The pacer owns a single "time of last request" watermark. Callers queue
    on the lock, so concurrent jobs serialize only the moment their request
    is issued, not the work they do between requests.
    """

    def __init__(
        self,
        min_interval_ms: int = 500,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._interval = max(0, int(min_interval_ms)) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: float | None = None

    @property
    def min_interval_ms(self) -> int:
        return int(self._interval * 1000)

    @property
    def last_request(self) -> float | None:
        return self._last_request

    async def wait(self) -> float:
        """Block until the next request may be issued; return the delay applied."""

        async with self._lock:
            delay = 0.0
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self._interval:
                    delay = self._interval - elapsed
                    logger.debug("Pacing outbound request for %.3fs", delay)
                    await self._sleep(delay)
            self._last_request = self._clock()
            return delay

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self.wait()
        return await fn()


_default_pacer: RequestPacer | None = None


def get_default_pacer() -> RequestPacer:
    """Return the process-wide pacer, creating it from configuration once."""

    global _default_pacer
    if _default_pacer is None:
        interval = load_config().github.min_request_interval_ms
        _default_pacer = RequestPacer(interval)
    return _default_pacer


def reset_default_pacer(pacer: RequestPacer | None = None) -> None:
    global _default_pacer
    _default_pacer = pacer


async def rate_limited_call(
    fn: Callable[[], Awaitable[T]],
    *,
    pacer: RequestPacer | None = None,
) -> T:
    """Await ``fn()`` once the shared pacer allows another request."""

    return await (pacer or get_default_pacer()).call(fn)


__all__ = [
    "RequestPacer",
    "get_default_pacer",
    "rate_limited_call",
    "reset_default_pacer",
]
