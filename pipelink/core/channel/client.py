import asyncio
import time
from pathlib import Path

from pipelink.core.channel.base import DuplexChannel
from pipelink.core.errors import EndpointConnectError
from pipelink.core.helpers.backoff import ExponentialBackoff
from pipelink.core.helpers.spawn import TaskSpawner
from pipelink.core.models.config import ChannelConfig
from pipelink.core.models.state import ChannelState
from pipelink.core.transport.endpoint import resolve_endpoint
from pipelink.core.transport.framing import ATTACH_ACK


class ClientChannel(DuplexChannel):
    """
    Client side of a named endpoint.

    `start()` connects to the endpoint resolved from `name` and blocks the
    caller for at most `connect_timeout` seconds, until a server channel
    has adopted the connection. A connection waiting in the endpoint's
    backlog for a free instance keeps the caller waiting. While the
    endpoint socket does not exist yet or refuses connections, the attempt
    is retried with exponential backoff, so a client may be started before
    its server.
    On success the read loop starts and `connected` fires. On failure the
    channel stays idle, no event fires and EndpointConnectError is raised.

    A client channel connects once. After a disconnect or `stop()` a new
    ClientChannel has to be created.
    """
    logger_name = "core.channel.client"

    def __init__(
        self,
        name: str,
        config: ChannelConfig | None = None,
        spawner: TaskSpawner | None = None,
        backoff: ExponentialBackoff | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(config=config, spawner=spawner, loop=loop)
        self.name = name
        self.path: Path = resolve_endpoint(name, self._config.socket_dir)
        self._backoff = backoff or ExponentialBackoff()

    async def start(self) -> None:
        if self._stopped or self._state != ChannelState.idle:
            raise EndpointConnectError(f"Channel {self.id} cannot be started twice")

        timeout = self._config.connect_timeout
        try:
            reader, writer = await asyncio.wait_for(self._connect(timeout), timeout=timeout)
        except asyncio.TimeoutError as ex:
            raise EndpointConnectError(
                f"Timed out after {timeout}s connecting to endpoint {self.name}"
            ) from ex

        if self._stopped:
            writer.close()
            raise EndpointConnectError(f"Channel {self.id} stopped while connecting")

        self._backoff.reset()
        self._bind(reader, writer)

    async def _connect(self, timeout: float) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        deadline = time.monotonic() + timeout
        while True:
            try:
                reader, writer = await asyncio.open_unix_connection(str(self.path))
            except (FileNotFoundError, ConnectionRefusedError) as ex:
                remaining = deadline - time.monotonic()
                delay = self._backoff.next_delay(remaining)
                self._logger.debug(
                    f"{self.id} - Endpoint {self.name} unavailable: {ex}. "
                    f"Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue
            except OSError as ex:
                raise EndpointConnectError(
                    f"Unable to connect to endpoint {self.name}: {ex}"
                ) from ex

            try:
                await self._wait_attached(reader)
            except (Exception, asyncio.CancelledError):
                writer.close()
                raise

            return reader, writer

    async def _wait_attached(self, reader: asyncio.StreamReader) -> None:
        """
        Wait until a server channel adopts the connection. Until then the
        connection only sits in the endpoint's backlog.
        """
        try:
            frame = await reader.readexactly(len(ATTACH_ACK))
        except asyncio.IncompleteReadError as ex:
            raise EndpointConnectError(
                f"Endpoint {self.name} closed the connection before attaching it"
            ) from ex
        except OSError as ex:
            raise EndpointConnectError(
                f"Connection to endpoint {self.name} failed while attaching: {ex}"
            ) from ex

        if frame != ATTACH_ACK:
            raise EndpointConnectError(f"Endpoint {self.name} sent an invalid attach acknowledgement")
