import asyncio
import contextlib
import logging
import signal
import threading
from typing import Generator

SHUTDOWN_SIGNALS = (
    signal.SIGINT,
    signal.SIGTERM,
)


@contextlib.contextmanager
def setup_signal_handler(loop: asyncio.AbstractEventLoop) -> Generator[asyncio.Event, None, None]:
    """
    Yield an event that is set when a shutdown signal is received.

    Handlers are installed on the running loop for the duration of the
    context and removed afterwards. Outside the main thread signals cannot
    be trapped, so the event is only set by the caller.
    """
    stop_event = asyncio.Event()

    if threading.current_thread() is not threading.main_thread():
        yield stop_event
        return

    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, stop_event.set)

    try:
        yield stop_event
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s] : %(message)s',
    )
