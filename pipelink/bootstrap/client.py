import asyncio
import logging
import sys
from dataclasses import replace

from pipelink.core.channel.client import ClientChannel
from pipelink.core.errors import EndpointConnectError, TransportClosedError
from pipelink.core.models.config import ChannelConfig
from pipelink.core.models.event import MessageReceived


async def connect(name: str, config: ChannelConfig) -> None:
    """
    Interactive client of `pipelink connect`: every stdin line is sent as
    one message, every received message is printed on its own line. Ends
    on stdin EOF or when the server goes away.
    """
    loop = asyncio.get_running_loop()
    logger = logging.getLogger("pipelink.client")
    closed = asyncio.Event()

    def on_message(event: MessageReceived) -> None:
        print(event.message, flush=True)

    channel = ClientChannel(name, config=config, loop=loop)
    channel.message_received.subscribe(on_message)
    channel.disconnected.subscribe(lambda _: closed.set())

    try:
        await channel.start()
    except EndpointConnectError as ex:
        logger.error(str(ex))
        return

    logger.info(f"Connected to endpoint {name}")

    try:
        while not closed.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break

            try:
                await channel.send_message(line.rstrip("\n"))
            except TransportClosedError as ex:
                logger.error(str(ex))
                break
    finally:
        await channel.stop()


def build_channel_config(base: ChannelConfig, timeout: float | None) -> ChannelConfig:
    if timeout is None:
        return base
    return replace(base, connect_timeout=timeout)
