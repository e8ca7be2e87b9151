import asyncio
import fcntl
import logging
import os
import tempfile
from collections import deque
from pathlib import Path
from typing import Protocol

from pipelink.core.errors import EndpointConnectError

SOCKET_PREFIX = "pipelink-"

MAX_SOCKET_PATH = 104
"""
Longest AF_UNIX path accepted on every supported platform (sun_path is
104 bytes on macOS/BSD, 108 on Linux, both including the trailing NUL).
"""


def default_socket_dir() -> Path:
    runtime = os.getenv("XDG_RUNTIME_DIR")
    if runtime and Path(runtime).is_dir():
        return Path(runtime)
    return Path(tempfile.gettempdir())


def resolve_endpoint(name: str, socket_dir: Path | None = None) -> Path:
    """
    Map an endpoint name to the filesystem path of its Unix socket.

    Server and clients resolve the same name to the same path, which makes
    the name the only thing peers need to share.
    """
    if not name or name.strip() != name:
        raise ValueError(f"Invalid endpoint name: {name!r}")

    if "/" in name or "\\" in name or "\0" in name or name in (".", ".."):
        raise ValueError(f"Endpoint name must not contain path separators: {name!r}")

    path = (socket_dir or default_socket_dir()) / f"{SOCKET_PREFIX}{name}.sock"
    if len(os.fsencode(path)) >= MAX_SOCKET_PATH:
        raise ValueError(f"Endpoint path too long for a Unix socket: {path}")

    return path


class Listener(Protocol):
    """
    A server channel waiting for a peer.

    The endpoint calls `attach()` exactly once, from the event loop, when it
    hands an accepted connection to the listener.
    """
    @property
    def id(self) -> str:
        ...

    def attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        ...


class PipeEndpoint:
    """
    Server side of a named endpoint.

    Owns the listening Unix socket and a bounded set of instances. An
    instance is one server channel, counted from the moment it is armed
    until it is released, whether it is still waiting for a peer or already
    talking to one. Arming beyond `max_instances` is refused with an
    EndpointConnectError, which is how the endpoint enforces the pool's
    concurrent-connection limit.

    Accepted connections are handed to armed listeners in arming order. A
    connection that arrives while no listener is armed waits in a backlog
    of at most `backlog` entries and is handed to the next listener armed;
    past that it is closed immediately.

    Ownership of the name is an exclusive `flock` on a sibling `.lock`
    file, held from `open()` until `close()`. The lock is released by the
    kernel when the owning process dies, so a socket file found while the
    lock is free is stale and removed.

    The endpoint does not read or write application data. Framing and
    events belong to the channel that receives the streams.
    """
    def __init__(
        self,
        name: str,
        max_instances: int = 10,
        backlog: int = 16,
        socket_dir: Path | None = None,
    ) -> None:
        if max_instances < 1:
            raise ValueError("max_instances must be at least 1")

        self.name = name
        self.path = resolve_endpoint(name, socket_dir)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self._max_instances = max_instances
        self._backlog = backlog

        self._server: asyncio.AbstractServer | None = None
        self._closed = False
        self._lock = asyncio.Lock()
        self._lock_fd: int | None = None
        self._instances: set[str] = set()
        self._armed: deque[Listener] = deque()
        self._pending: deque[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = deque()

        self._logger = logging.getLogger("core.transport.endpoint")

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def instances(self) -> int:
        return len(self._instances)

    @property
    def armed(self) -> int:
        return len(self._armed)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def open(self) -> None:
        """
        Bind the endpoint socket. Safe to call more than once, but a closed
        endpoint cannot be reopened.

        Raises EndpointConnectError when another endpoint, in this process
        or another one, owns the name. A socket file left behind by a dead
        owner is removed.
        """
        async with self._lock:
            if self._server is not None:
                return

            if self._closed:
                raise EndpointConnectError(f"Endpoint {self.name} has been closed")

            self._acquire_ownership()

            try:
                if self.path.exists() or self.path.is_symlink():
                    self._logger.info(f"Removing stale endpoint socket {self.path}")
                    self.path.unlink()

                self._server = await asyncio.start_unix_server(
                    self._accept,
                    path=str(self.path),
                )
            except OSError as ex:
                self._release_ownership()
                raise EndpointConnectError(
                    f"Unable to open endpoint {self.name} at {self.path}: {ex}"
                ) from ex

            self._logger.debug(f"Endpoint {self.name} listening on {self.path}")

    def arm(self, listener: Listener) -> None:
        """
        Reserve an instance for `listener` and queue it for the next peer.
        """
        if self._server is None:
            raise EndpointConnectError(f"Endpoint {self.name} is not open")

        if len(self._instances) >= self._max_instances:
            raise EndpointConnectError(
                f"All {self._max_instances} instances of endpoint {self.name} are busy"
            )

        self._instances.add(listener.id)

        while self._pending:
            reader, writer = self._pending.popleft()
            if reader.at_eof() or writer.is_closing():
                # peer gave up while waiting in the backlog
                writer.close()
                continue

            listener.attach(reader, writer)
            return

        self._armed.append(listener)

    def release(self, listener: Listener) -> None:
        """
        Give back the instance held by `listener`. Idempotent.
        """
        self._instances.discard(listener.id)
        if listener in self._armed:
            self._armed.remove(listener)

    async def close(self, timeout: float = 5.0) -> None:
        """
        Stop accepting, drop connections still waiting in the backlog and
        remove the socket file.

        Waits at most `timeout` seconds for connections still attached to
        channels to go away.
        """
        self._closed = True
        server, self._server = self._server, None
        self._armed.clear()

        while self._pending:
            _, writer = self._pending.popleft()
            writer.close()

        if server is None:
            self._release_ownership()
            return

        server.close()
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"Endpoint {self.name} closed with connections still open")

        self.path.unlink(missing_ok=True)
        self._release_ownership()
        self._logger.debug(f"Endpoint {self.name} closed")

    def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._armed:
            listener = self._armed.popleft()
            self._logger.debug(f"Endpoint {self.name} handing connection to {listener.id}")
            listener.attach(reader, writer)
            return

        if len(self._pending) < self._backlog:
            self._logger.debug(f"Endpoint {self.name} has no listener armed, connection queued")
            self._pending.append((reader, writer))
            return

        self._logger.warning(f"Endpoint {self.name} backlog full, refusing connection")
        writer.close()

    def _acquire_ownership(self) -> None:
        while True:
            try:
                fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
            except OSError as ex:
                raise EndpointConnectError(
                    f"Unable to open endpoint lock {self.lock_path}: {ex}"
                ) from ex

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                raise EndpointConnectError(f"Endpoint name {self.name} is already in use") from None
            except OSError as ex:
                os.close(fd)
                raise EndpointConnectError(
                    f"Unable to lock endpoint {self.name}: {ex}"
                ) from ex

            # the previous owner unlinks the lock file before releasing it
            try:
                current = os.stat(self.lock_path)
            except FileNotFoundError:
                os.close(fd)
                continue

            if os.path.samestat(os.fstat(fd), current):
                self._lock_fd = fd
                return

            os.close(fd)

    def _release_ownership(self) -> None:
        fd, self._lock_fd = self._lock_fd, None
        if fd is None:
            return

        self.lock_path.unlink(missing_ok=True)
        os.close(fd)
