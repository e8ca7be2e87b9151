import asyncio

from pipelink.core.channel.base import DuplexChannel
from pipelink.core.errors import EndpointConnectError
from pipelink.core.helpers.spawn import TaskSpawner
from pipelink.core.models.config import ChannelConfig
from pipelink.core.models.state import ChannelState
from pipelink.core.transport.endpoint import PipeEndpoint
from pipelink.core.transport.framing import ATTACH_ACK


class ServerChannel(DuplexChannel):
    """
    Server side of one connection.

    `start()` arms a listening instance on the endpoint instead of
    connecting: the channel sits in the listening state until the endpoint
    hands it an accepted peer. Adopting a peer writes the attach
    acknowledgement the client waits for, then the channel behaves exactly
    like a client channel. The instance is given back to the endpoint when
    the peer goes away or the channel is stopped, whichever comes first.
    """
    logger_name = "core.channel.server"

    def __init__(
        self,
        endpoint: PipeEndpoint,
        config: ChannelConfig | None = None,
        spawner: TaskSpawner | None = None,
        channel_id: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(config=config, spawner=spawner, channel_id=channel_id, loop=loop)
        self._endpoint = endpoint

    async def start(self) -> None:
        if self._stopped:
            raise EndpointConnectError(f"Channel {self.id} has been stopped")

        if self._state != ChannelState.idle:
            return

        await self._endpoint.open()
        if self._stopped:
            raise EndpointConnectError(f"Channel {self.id} stopped while starting")

        # a connection waiting in the backlog attaches during arm()
        self._state = ChannelState.listening
        try:
            self._endpoint.arm(self)
        except EndpointConnectError:
            self._state = ChannelState.idle
            raise

        if self._state == ChannelState.listening:
            self._logger.debug(f"{self.id} - Waiting for connection on {self._endpoint.name}")

    def attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._state != ChannelState.listening:
            self._logger.warning(f"{self.id} - Refusing connection, channel is {self._state}")
            writer.close()
            return

        try:
            writer.write(ATTACH_ACK)
        except (ConnectionError, OSError, RuntimeError) as ex:
            # the read loop reports the lost peer
            self._logger.info(f"{self.id} - Failed to acknowledge peer: {ex}")

        self._bind(reader, writer)

    def _on_released(self) -> None:
        self._endpoint.release(self)
