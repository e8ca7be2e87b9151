import asyncio
import logging
import uuid

from pipelink.core.errors import DrainError, FramingError, TransportClosedError
from pipelink.core.helpers.events import EventSource
from pipelink.core.helpers.spawn import TaskSpawner
from pipelink.core.models.config import ChannelConfig
from pipelink.core.models.event import Connected, Disconnected, MessageReceived
from pipelink.core.models.result import TaskResult
from pipelink.core.models.state import ChannelState
from pipelink.core.transport.framing import FrameDecoder, encode_frame


class DuplexChannel:
    """
    One live, message-framed, bidirectional stream bound to a single peer.

    DuplexChannel holds everything client and server channels share: the
    framed send path, the sequential read loop, the three lifecycle event
    sources and the teardown logic. Subclasses only decide how a transport
    is obtained (`start()`), then call `_bind()` with the resulting streams.

    The read loop issues one read of at most `buffer_size` bytes at a time
    and never issues the next read before the previous one completed, so
    messages from the peer are delivered in the order they were sent.
    Bytes go through a FrameDecoder; `message_received` fires once per
    complete frame, synchronously from the read loop. A read returning no
    bytes means the peer went away: the loop ends, `disconnected` fires once
    and the channel releases its transport.

    `stop()` is terminal. It cancels the read loop, tries to flush pending
    outbound bytes within `drain_timeout`, and always releases the
    transport, even when the drain fails. No event fires once `stop()` has
    started.
    """
    logger_name = "core.channel.base"

    def __init__(
        self,
        config: ChannelConfig | None = None,
        spawner: TaskSpawner | None = None,
        channel_id: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if loop is None:
            loop = asyncio.get_event_loop()

        self.id = channel_id or uuid.uuid4().hex
        self._config = config or ChannelConfig()
        self._loop = loop
        self._spawner = spawner or TaskSpawner(loop)

        self.connected: EventSource[Connected] = EventSource("connected")
        self.disconnected: EventSource[Disconnected] = EventSource("disconnected")
        self.message_received: EventSource[MessageReceived] = EventSource("message_received")

        self._reader: asyncio.StreamReader = None  # type: ignore[assignment]
        self._writer: asyncio.StreamWriter = None  # type: ignore[assignment]
        self._read_task: asyncio.Task | None = None
        self._state = ChannelState.idle
        self._stopped = False

        self._logger = logging.getLogger(self.logger_name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self._state})"

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.connected

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        """
        Release the channel. Never raises for transport failures.
        """
        if self._stopped:
            return

        self._stopped = True
        self._state = ChannelState.closed

        if self._read_task is not None and self._read_task is not asyncio.current_task():
            self._read_task.cancel()

        try:
            await self._drain()
        except DrainError as ex:
            self._logger.error(f"{self.id} - {ex}", exc_info=ex.__cause__)
        finally:
            await self._release()

        self._on_released()
        self._logger.debug(f"{self.id} - Channel stopped")

    async def send_message(self, message: str) -> TaskResult:
        """
        Write one framed message and wait until it has been flushed.

        A channel that is not connected rejects the message immediately
        instead of queueing it.
        """
        if not self.is_connected:
            self._logger.error(f"{self.id} - Cannot send message, channel is not connected")
            raise TransportClosedError(f"Channel {self.id} is not connected")

        frame = encode_frame(message)

        try:
            self._writer.write(frame)
            await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as ex:
            self._logger.error(f"{self.id} - Failed to send message: {ex}")
            self._spawner.spawn(self._connection_lost())
            raise TransportClosedError(f"Channel {self.id} lost its peer while sending") from ex

        return TaskResult(is_success=True)

    def _bind(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """
        Take ownership of a connected transport, start reading and fire
        `connected`.
        """
        self._reader = reader
        self._writer = writer
        self._state = ChannelState.connected
        self._read_task = self._spawner.spawn(self._read_loop(), name=f"read-{self.id}")
        self._logger.debug(f"{self.id} - Connection made")
        self._emit(self.connected, Connected(channel_id=self.id))

    async def _read_loop(self) -> None:
        decoder = FrameDecoder(self._config.max_message_size)
        try:
            while True:
                data = await self._reader.read(self._config.buffer_size)
                if not data:
                    break

                for message in decoder.feed(data):
                    self._emit(
                        self.message_received,
                        MessageReceived(channel_id=self.id, message=message)
                    )
        except FramingError as ex:
            self._logger.warning(f"{self.id} - {ex}, closing connection")
        except (ConnectionError, OSError) as ex:
            self._logger.info(f"{self.id} - Read failed: {ex}")

        await self._connection_lost()

    async def _connection_lost(self) -> None:
        if self._stopped or self._state != ChannelState.connected:
            return

        self._state = ChannelState.disconnected
        self._logger.debug(f"{self.id} - Connection lost")

        if self._read_task is not None and self._read_task is not asyncio.current_task():
            self._read_task.cancel()

        await self._release()
        self._on_released()
        self._emit(self.disconnected, Disconnected(channel_id=self.id))

    async def _drain(self) -> None:
        writer = self._writer
        if writer is None or writer.is_closing():
            return

        try:
            await asyncio.wait_for(writer.drain(), timeout=self._config.drain_timeout)
        except (asyncio.TimeoutError, ConnectionError, OSError, RuntimeError) as ex:
            raise DrainError(f"Failed to flush outstanding data: {ex!r}") from ex

    async def _release(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None  # type: ignore[assignment]
        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as ex:
            self._logger.debug(f"{self.id} - Transport closed with error: {ex}")

    def _on_released(self) -> None:
        """Hook for subclasses holding resources beyond the transport."""

    def _emit(self, source: EventSource, event: object) -> None:
        if self._stopped:
            return
        source.emit(event)
