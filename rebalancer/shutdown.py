"""
Graceful shutdown coordination.

SIGINT/SIGTERM set a flag instead of killing the process: the step in
flight finishes, no new workflow step starts, and registered resources
are released exactly once in reverse acquisition order.
"""
import asyncio
import inspect
import logging
import signal
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """Shutdown flag plus an ordered set of resource releases."""

    def __init__(self, logger: logging.Logger = logger):
        self.logger = logger
        self._event = asyncio.Event()
        self._releases: List[Tuple[str, Callable[[], Any]]] = []
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.reason: Optional[str] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._event.is_set()

    def request_shutdown(self, reason: str = "requested") -> None:
        if self._event.is_set():
            self.logger.warning(f"Shutdown already in progress ({self.reason}), received {reason} again")
            return
        self.reason = reason
        self.logger.info(f"Shutdown requested ({reason}), finishing current step")
        self._event.set()

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            self._loop.add_signal_handler(sig, self.request_shutdown, sig.name)

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in SHUTDOWN_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    def register(self, name: str, release: Callable[[], Any]) -> None:
        """Register a release callable (sync or async). Released in reverse order."""
        if self._closed:
            raise RuntimeError(f"Cannot register {name}: coordinator already closed")
        self._releases.append((name, release))

    async def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True early if shutdown is requested."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def close(self) -> None:
        """Release every registered resource once, newest first."""
        if self._closed:
            return
        self._closed = True
        self.remove_signal_handlers()

        while self._releases:
            name, release = self._releases.pop()
            try:
                result = release()
                if inspect.isawaitable(result):
                    await result
                self.logger.debug(f"Released {name}")
            except Exception as e:
                self.logger.error(f"Failed to release {name}: {e}")

    async def __aenter__(self) -> "ShutdownCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
