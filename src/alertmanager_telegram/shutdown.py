"""Signal driven shutdown coordination for the bot.

Usage:
    ```python
    async with GracefulShutdown() as shutdown:
        shutdown.register_cleanup(bot.stop)
        await bot.start()
        await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class GracefulShutdown:
    """Traps SIGTERM and SIGINT and turns them into an awaitable event.

    The first signal sets the event; a second one exits immediately with
    ``128 + signum``. Cleanup callbacks (sync or async) run in registration
    order when the context manager exits.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown_requested = False
        self._cleanup_callbacks: list[Callable[[], Any]] = []

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def register_cleanup(self, callback: Callable[[], Any]) -> None:
        """Register a callback to run on exit."""
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request shutdown from application code."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested")
            if self._event:
                self._event.set()

    async def wait(self) -> None:
        """Block until a signal arrives or ``request_shutdown`` is called."""
        if self._event is None:
            self._event = asyncio.Event()
        if self._shutdown_requested:
            self._event.set()
        await self._event.wait()

    def install_signal_handlers(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._event is None:
            self._event = asyncio.Event()

        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, ValueError, OSError) as e:
                # add_signal_handler is unavailable on Windows event loops
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in SHUTDOWN_SIGNALS:
            with suppress(NotImplementedError, ValueError, OSError):
                self._loop.remove_signal_handler(sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            logger.warning("Received %s again, forcing exit", sig.name)
            sys.exit(128 + sig.value)

        self._shutdown_requested = True
        logger.info("Received %s, shutting down", sig.name)
        if self._event:
            self._event.set()

    async def run_cleanup_callbacks(self) -> None:
        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
