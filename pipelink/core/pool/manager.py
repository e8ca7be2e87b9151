import asyncio
import logging

from pipelink.core.channel.server import ServerChannel
from pipelink.core.delivery import DeliveryContext, LoopDelivery
from pipelink.core.errors import BroadcastFailure, EndpointConnectError
from pipelink.core.helpers.events import EventSource
from pipelink.core.helpers.spawn import TaskSpawner
from pipelink.core.models.config import PoolConfig
from pipelink.core.models.event import Connected, Disconnected, MessageReceived
from pipelink.core.models.result import TaskResult
from pipelink.core.models.state import ChannelState
from pipelink.core.pool.registry import ChannelRegistry
from pipelink.core.transport.endpoint import PipeEndpoint


class ConnectionPool:
    """
    Server side of a named endpoint: a pool of server channels, one per
    connection, behind a single name.

    Starting the pool does nothing by itself. Each call to
    `start_listener()` arms one more listening channel, up to the endpoint's
    `max_instances`, so callers decide how many peers may attach at once.
    Every channel is registered before it starts listening and stays
    registered until its peer disconnects or the pool stops.

    The pool subscribes to the three events of every channel it creates
    and re-posts them, unchanged, through its DeliveryContext to its own
    `connected`, `disconnected` and `message_received` sources. On
    disconnect, the channel is unregistered (its subscriptions released)
    and stopped. A slot is never reused: with `rearm_listeners` enabled the
    pool arms a brand-new channel whenever a listener is consumed by a peer,
    or, when the endpoint was full at that time, as soon as a disconnect
    frees an instance.

    `send_message()` broadcasts to every connected channel in registration
    order and stops at the first failure, which is raised to the caller as
    BroadcastFailure. `stop()` on the other hand never fails: per-channel
    teardown errors are logged and the registry is always cleared.

    The pool is driven from the event loop it was created on. Broadcasting
    from a delivery callback is safe as long as the callback schedules the
    coroutine on that loop instead of blocking the loop thread on it.
    """
    def __init__(
        self,
        config: PoolConfig | None = None,
        delivery: DeliveryContext | None = None,
        spawner: TaskSpawner | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if loop is None:
            loop = asyncio.get_event_loop()

        self._config = config or PoolConfig()
        self._loop = loop
        self._owns_spawner = spawner is None
        self._spawner = spawner or TaskSpawner(loop)
        self._owns_delivery = delivery is None
        self._delivery = delivery or LoopDelivery(loop)
        self._endpoint = PipeEndpoint(
            name=self._config.name,
            max_instances=self._config.max_instances,
            backlog=self._config.backlog,
            socket_dir=self._config.channel.socket_dir,
        )
        self._registry = ChannelRegistry()

        self.connected: EventSource[Connected] = EventSource("connected")
        self.disconnected: EventSource[Disconnected] = EventSource("disconnected")
        self.message_received: EventSource[MessageReceived] = EventSource("message_received")

        self._missing_listeners = 0
        self._started = False
        self._stopped = False

        self._logger = logging.getLogger("core.pool.manager")

    @property
    def server_id(self) -> str:
        return self._config.name

    @property
    def endpoint(self) -> PipeEndpoint:
        return self._endpoint

    @property
    def channels(self) -> list[ServerChannel]:
        return self._registry.snapshot()

    @property
    def connected_count(self) -> int:
        return sum(1 for channel in self._registry.snapshot() if channel.is_connected)

    @property
    def listening_count(self) -> int:
        return sum(
            1 for channel in self._registry.snapshot()
            if channel.state == ChannelState.listening
        )

    def __len__(self) -> int:
        return len(self._registry)

    def start(self) -> None:
        """
        Mark the pool as started. Listening channels are armed separately
        through `start_listener()`.
        """
        if self._started:
            return

        self._started = True
        self._logger.debug(f"Pool {self.server_id} started")

    async def start_listener(self) -> ServerChannel:
        """
        Create, register and arm one listening channel.

        Raises EndpointConnectError when the endpoint refuses a new
        instance. The refused channel is unregistered; the pool and its
        other channels are unaffected.
        """
        if self._stopped:
            raise RuntimeError("Connection pool is shut down")

        channel = ServerChannel(
            endpoint=self._endpoint,
            config=self._config.channel,
            spawner=self._spawner,
            loop=self._loop,
        )
        registrations = [
            channel.connected.subscribe(self._on_connected),
            channel.disconnected.subscribe(self._on_disconnected),
            channel.message_received.subscribe(self._on_message_received),
        ]
        self._registry.add(channel, registrations)

        try:
            await channel.start()
        except EndpointConnectError:
            self._registry.remove(channel.id)
            await channel.stop()
            raise

        self._logger.debug(f"Pool {self.server_id} armed listener {channel.id}")
        return channel

    async def stop(self) -> None:
        """
        Stop every channel, clear the registry and close the endpoint.

        Subscriptions are released before each channel is stopped, so no
        event can reach the pool while it is tearing down.
        """
        self._stopped = True

        for channel in self._registry.drain():
            try:
                await channel.stop()
            except Exception as ex:
                self._logger.error(f"Failed to stop channel {channel.id}: {ex}", exc_info=ex)

        try:
            await self._endpoint.close(timeout=self._config.channel.drain_timeout)
        except OSError as ex:
            self._logger.error(f"Failed to close endpoint {self.server_id}: {ex}", exc_info=ex)

        if self._owns_spawner:
            await self._spawner.join(timeout=self._config.channel.drain_timeout)

        if self._owns_delivery:
            self._delivery.close()

        self._logger.debug(f"Pool {self.server_id} stopped")

    async def send_message(self, message: str) -> TaskResult:
        """
        Send `message` to every connected channel, one after the other.

        The result is successful only if every send was. The first failing
        channel aborts the broadcast: later channels are not attempted and
        BroadcastFailure is raised, chained from the channel's error.
        """
        success = True
        delivered: list[str] = []

        for channel in self._registry.snapshot():
            if not channel.is_connected:
                continue

            try:
                result = await channel.send_message(message)
            except Exception as ex:
                self._logger.error(f"Broadcast to channel {channel.id} failed: {ex}")
                raise BroadcastFailure(channel.id, delivered) from ex

            delivered.append(channel.id)
            success = success and result.is_success

        return TaskResult(is_success=success)

    def _on_connected(self, event: Connected) -> None:
        self._delivery.post(self.connected.emit, event)

        if self._config.rearm_listeners and not self._stopped:
            self._spawner.spawn(self._rearm())

    def _on_disconnected(self, event: Disconnected) -> None:
        self._delivery.post(self.disconnected.emit, event)

        channel = self._registry.remove(event.channel_id)
        if channel is not None:
            self._spawner.spawn(channel.stop())

        if self._missing_listeners and not self._stopped:
            self._missing_listeners -= 1
            self._spawner.spawn(self._rearm())

    def _on_message_received(self, event: MessageReceived) -> None:
        self._delivery.post(self.message_received.emit, event)

    async def _rearm(self) -> None:
        if self._stopped:
            return

        try:
            await self.start_listener()
        except EndpointConnectError as ex:
            self._missing_listeners += 1
            self._logger.info(f"Pool {self.server_id} could not re-arm a listener: {ex}")
