from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class CancelToken:
    """Cancellation flag that can be awaited from any event loop.

    ``cancel`` may be called from any thread, any number of times. Waiting
    coroutines are woken through their own loop, so a cancel can sit in the
    same ``asyncio.wait`` as a subprocess.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Request cancellation. Returns False when it was already requested."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, future)
            except RuntimeError:
                # The waiting loop has already shut down.
                logger.debug("cancel token waiter loop is closed")
        return True

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        entry = (loop, future)
        with self._lock:
            if self._cancelled:
                return
            self._waiters.append(entry)
        try:
            await future
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)
