"""Process-wide shutdown signal.

The signal is a one-way flag: once set it stays set. Any number of tasks
can wait on it, and setting it again has no effect.
"""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """One-way broadcast flag requesting shutdown.

    Example:
        shutdown = ShutdownSignal()
        install_signal_handlers(shutdown)

        if await shutdown.wait(timeout=10.0):
            return  # shutdown requested
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_set(self) -> bool:
        """Whether shutdown has been requested."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """What requested the shutdown (first caller wins)."""
        return self._reason

    def set(self, reason: str = "requested") -> None:
        """Request shutdown. Calling this more than once is harmless."""
        if self._event.is_set():
            return
        self._reason = reason
        logger.info("Shutdown requested (%s)", reason)
        self._event.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until shutdown is requested or the timeout elapses.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely

        Returns:
            True if shutdown was requested, False on timeout
        """
        if self._event.is_set():
            return True
        if timeout is None:
            await self._event.wait()
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True


def install_signal_handlers(shutdown: ShutdownSignal) -> None:
    """Set the shutdown signal on SIGINT and SIGTERM.

    Must be called from inside the running event loop. Platforms whose loop
    cannot register signal handlers fall back to signal.signal().
    """
    loop = asyncio.get_running_loop()

    for sig in HANDLED_SIGNALS:
        try:
            loop.add_signal_handler(sig, shutdown.set, sig.name)
        except (NotImplementedError, RuntimeError):
            signal.signal(
                sig,
                lambda signum, _frame: loop.call_soon_threadsafe(
                    shutdown.set, signal.Signals(signum).name
                ),
            )
        logger.debug("Installed handler for %s", sig.name)
