import asyncio
import concurrent.futures
import logging

from pipelink.bootstrap.config.settings import PipeLinkConfig
from pipelink.core.delivery import create_delivery
from pipelink.core.errors import BroadcastFailure, EndpointConnectError
from pipelink.core.helpers.spawn import TaskSpawner
from pipelink.core.helpers.utils import setup_signal_handler
from pipelink.core.models.event import Connected, Disconnected, MessageReceived
from pipelink.core.pool.manager import ConnectionPool


class Relay:
    """
    Host behaviour of `pipelink serve`: logs lifecycle events and forwards
    every message received from one client to all connected clients.

    Handlers may run on the loop or on a delivery worker thread, so the
    broadcast is always submitted to the pool's loop rather than awaited.
    """
    def __init__(self, pool: ConnectionPool, loop: asyncio.AbstractEventLoop) -> None:
        self._pool = pool
        self._loop = loop
        self._logger = logging.getLogger("pipelink.server")

    def attach(self) -> None:
        self._pool.connected.subscribe(self.on_connected)
        self._pool.disconnected.subscribe(self.on_disconnected)
        self._pool.message_received.subscribe(self.on_message)

    def on_connected(self, event: Connected) -> None:
        self._logger.info(f"Client connected on channel {event.channel_id}")

    def on_disconnected(self, event: Disconnected) -> None:
        self._logger.info(f"Client disconnected from channel {event.channel_id}")

    def on_message(self, event: MessageReceived) -> None:
        self._logger.debug(f"{event.channel_id} - Received {len(event.message)} chars")
        future = asyncio.run_coroutine_threadsafe(self.broadcast(event.message), self._loop)
        future.add_done_callback(self._on_broadcast_done)

    async def broadcast(self, message: str) -> None:
        try:
            await self._pool.send_message(message)
        except BroadcastFailure as ex:
            self._logger.error(
                f"Relay stopped at channel {ex.channel_id} after "
                f"{len(ex.delivered)} deliveries: {ex.__cause__}"
            )

    def _on_broadcast_done(self, future: concurrent.futures.Future) -> None:
        if not future.cancelled() and (ex := future.exception()):
            self._logger.error(f"Relay failed: {ex}", exc_info=ex)


async def serve(config: PipeLinkConfig) -> None:
    loop = asyncio.get_running_loop()
    logger = logging.getLogger("pipelink.server")

    spawner = TaskSpawner(loop)
    delivery = create_delivery(config.delivery, loop)
    pool = ConnectionPool(
        config=config.to_pool_config(),
        delivery=delivery,
        spawner=spawner,
        loop=loop,
    )
    Relay(pool, loop).attach()

    try:
        with setup_signal_handler(loop) as stop_event:
            pool.start()
            for _ in range(min(config.pool.listeners, config.pool.max_instances)):
                await pool.start_listener()

            logger.info(f"Endpoint {pool.server_id} listening on {pool.endpoint.path}")
            await stop_event.wait()
            logger.info("Shutting down endpoint.")
    except EndpointConnectError as ex:
        logger.error(f"Unable to publish endpoint {pool.server_id}: {ex}")
    finally:
        await pool.stop()
        delivery.close()

        if remaining := spawner.remaining_tasks:
            logger.info(f"Waiting for {remaining} background tasks to complete.")
            await spawner.join(timeout=config.channel.drain_timeout)
