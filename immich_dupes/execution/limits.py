"""
Request throttling shared by every task of one run.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, Sequence

from tqdm import tqdm


class RateLimiter:
    """
    Token bucket limiter for asyncio.

    Holds up to `rate` tokens and refills at `rate` tokens per second. Each
    acquire() takes one token, sleeping until one is available. Waiters are
    served in arrival order.
    """

    def __init__(self, rate: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.rate = float(rate)
        self.capacity = float(rate)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait_time = (1 - self._tokens) / self.rate
                await self._sleep(wait_time)
                self._refill()
            self._tokens -= 1

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens


class Throttle:
    """
    Rate limiter plus a bound on in-flight requests.
    Built once per Executor/Verifier/Restorer and shared by its tasks.
    """

    def __init__(self, requests_per_sec: float, max_concurrent: int,
                 limiter: Optional[RateLimiter] = None):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.limiter = limiter or RateLimiter(requests_per_sec)
        self.max_concurrent = max_concurrent
        self._permits = asyncio.Semaphore(max_concurrent)

    @asynccontextmanager
    async def slot(self):
        async with self._permits:
            await self.limiter.acquire()
            yield

    async def run(self, coro_fn: Callable[..., Awaitable], *args, **kwargs):
        """Runs one remote call inside a slot."""
        async with self.slot():
            return await coro_fn(*args, **kwargs)


async def gather_in_order(coros: Sequence[Awaitable], desc: str, show_progress: bool = True) -> list:
    """
    Runs the coroutines as concurrent tasks and returns their results in
    input order. A tqdm bar counts completions. If any task raises, every
    other task is cancelled and the exception propagates.
    """
    async def indexed(i, coro):
        return i, await coro

    results: list = [None] * len(coros)
    tasks = [asyncio.create_task(indexed(i, c)) for i, c in enumerate(coros)]

    with tqdm(total=len(tasks), desc=desc, disable=not show_progress) as bar:
        try:
            for next_done in asyncio.as_completed(tasks):
                i, value = await next_done
                results[i] = value
                bar.update(1)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    return results
