from __future__ import annotations

import asyncio
import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, TypeVar

from signal_engine.resilience.timeouts import bounded_timeout


T = TypeVar("T")

logger = logging.getLogger(__name__)


IO_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="io")


async def run_io(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    return await loop.run_in_executor(IO_POOL, lambda: ctx.run(fn, *args, **kwargs))


class FetchBulkhead:
    def __init__(self, *, concurrency: int = 6, timeout_seconds: float = 5.0) -> None:
        self._concurrency = max(1, int(concurrency))
        self._timeout_seconds = max(0.01, float(timeout_seconds))
        self._sem: asyncio.Semaphore | None = None
        self._in_flight = 0
        self._peak_in_flight = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def _semaphore(self) -> asyncio.Semaphore:
        if self._sem is None:
            self._sem = asyncio.Semaphore(self._concurrency)
        return self._sem

    async def run(self, fn: Callable[[], Awaitable[T]], *, label: str = "") -> T | None:
        async with self._semaphore():
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                timeout = bounded_timeout(self._timeout_seconds)
                if timeout <= 0:
                    logger.debug("bulkhead skip label=%s deadline_exhausted", label)
                    return None
                return await asyncio.wait_for(fn(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("bulkhead timeout label=%s timeout=%.2fs", label, self._timeout_seconds)
                return None
            except Exception as e:
                logger.warning("bulkhead failure label=%s err=%s", label, e)
                return None
            finally:
                self._in_flight -= 1
