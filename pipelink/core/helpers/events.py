import logging
import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

EventHandler = Callable[[T], None]


class Registration:
    """
    Token returned by `EventSource.subscribe`.

    Releasing the token detaches the handler from its source. Releasing
    twice is harmless, so owners can release tokens on every teardown path
    without tracking whether it already happened.
    """
    def __init__(self, source: "EventSource", handler: EventHandler) -> None:
        self._source = source
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if self._active:
            self._active = False
            self._source.unsubscribe(self._handler)


class EventSource(Generic[T]):
    """
    A named, thread-safe list of handlers for one kind of event.

    `emit` invokes handlers synchronously, in subscription order, on the
    caller's thread. Emitting with no subscribers is a no-op. An exception
    raised by one handler is logged and does not prevent the remaining
    handlers from running: a faulty consumer must never break the I/O loop
    that produced the event.
    """
    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[EventHandler] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger("core.helpers.events")

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def subscribe(self, handler: EventHandler) -> Registration:
        with self._lock:
            self._handlers.append(handler)
        return Registration(self, handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def emit(self, event: T) -> None:
        with self._lock:
            handlers = list(self._handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception as ex:
                self._logger.error(
                    f"Handler {handler!r} failed on {self.name} event: {ex}",
                    exc_info=ex
                )
