import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Protocol


class DeliveryContext(Protocol):
    """
    The execution context on which externally observed events are delivered.

    Channels raise events from their own read loops. The pool re-posts each
    of them through a DeliveryContext, so that consumers observe every event
    on one designated context regardless of which connection produced it.
    Implementations must run posted callbacks in posting order: events of
    one channel are posted in the order that channel produced them, and
    consumers see them in that same order. Events of different channels may
    interleave.
    """

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Schedule `callback(*args)` on the delivery context."""

    def close(self) -> None:
        """Stop accepting callbacks. Pending callbacks may still run."""


class InlineDelivery:
    """
    Runs callbacks immediately on the posting context.

    Consumers then run inside the channel read loop that produced the event:
    a slow consumer delays further reads of that channel.
    """

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        callback(*args)

    def close(self) -> None:
        pass


class LoopDelivery:
    """
    Posts callbacks to a designated asyncio event loop.

    The loop is captured at construction, the way a synchronization context
    is captured by the component that creates the pool. Posting is
    thread-safe and FIFO. Callbacks posted after `close()` or after the loop
    has been closed are dropped with a warning.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_event_loop()
        self._closed = False
        self._logger = logging.getLogger("core.delivery")

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._closed or self._loop.is_closed():
            self._logger.warning(f"Delivery loop closed, dropping {callback!r}")
            return

        self._loop.call_soon_threadsafe(callback, *args)

    def close(self) -> None:
        self._closed = True


class ExecutorDelivery:
    """
    Posts callbacks to a single dedicated worker thread.

    Consumers never run on the event loop, so they may block without
    stalling any channel. A consumer that needs to talk to the pool from
    the worker thread must go through `asyncio.run_coroutine_threadsafe`;
    it must not block on a coroutine from the loop thread itself.
    """

    def __init__(self, thread_name_prefix: str = "pipelink-events") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name_prefix)
        self._closed = False
        self._logger = logging.getLogger("core.delivery")

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._closed:
            self._logger.warning(f"Delivery executor closed, dropping {callback!r}")
            return

        future = self._executor.submit(callback, *args)
        future.add_done_callback(self._on_done)

    def close(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)

    def _on_done(self, future: Future) -> None:
        if ex := future.exception():
            self._logger.error(f"Error occurred in delivered callback: {ex}", exc_info=ex)


def create_delivery(kind: str, loop: asyncio.AbstractEventLoop | None = None) -> DeliveryContext:
    if kind == "inline":
        return InlineDelivery()
    if kind == "loop":
        return LoopDelivery(loop)
    if kind == "executor":
        return ExecutorDelivery()
    raise ValueError(f"Unknown delivery strategy: {kind}")
