"""SIGTERM/SIGINT handling for graceful shutdown."""

import asyncio
import logging
import signal
from collections.abc import Callable

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_shutdown_handlers(
    loop: asyncio.AbstractEventLoop,
    on_shutdown: Callable[[], None],
    on_force: Callable[[], None] | None = None,
) -> None:
    """Route SIGTERM/SIGINT to the supervisor.

    The first signal calls on_shutdown, letting tailers finish their current
    state. A second signal calls on_force (if given) to cancel immediately.

    Where the loop cannot install handlers (Windows), falls back to
    signal.signal(), which runs the callbacks via call_soon_threadsafe.
    """
    received = 0

    def handle(sig: signal.Signals) -> None:
        nonlocal received
        received += 1
        if received == 1:
            logger.info("Received signal, initiating graceful shutdown", extra={"operation": sig.name})
            on_shutdown()
        elif on_force is not None:
            logger.warning("Received second signal, forcing immediate shutdown", extra={"operation": sig.name})
            on_force()

    try:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, handle, sig)
    except NotImplementedError:
        def _handler(signum, frame):
            loop.call_soon_threadsafe(handle, signal.Signals(signum))

        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, _handler)


def remove_shutdown_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except NotImplementedError:
            signal.signal(sig, signal.SIG_DFL)
