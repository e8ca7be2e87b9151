import asyncio
import contextlib
from dataclasses import replace

from pipelink.bootstrap.client import build_channel_config, connect
from pipelink.bootstrap.config.loader import find_configfile, get_cli_args
from pipelink.bootstrap.deps import get_config
from pipelink.bootstrap.server import serve
from pipelink.core.helpers.utils import setup_logging
from pipelink.core.models.config import ChannelConfig


def main():
    cli = get_cli_args()
    setup_logging(cli.log_level)

    if cli.command == "connect":
        coro = run_client(cli)
    else:
        coro = serve(get_config())

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(coro)


async def run_client(cli) -> None:
    if cli.name is None or find_configfile() is not None:
        config = get_config()
        name = cli.name or config.endpoint.name
        channel_config = config.to_channel_config()
    else:
        name = cli.name
        channel_config = ChannelConfig()

    if cli.socket_dir is not None:
        channel_config = replace(channel_config, socket_dir=cli.socket_dir)

    await connect(name, build_channel_config(channel_config, cli.timeout))


if __name__ == "__main__":
    main()
