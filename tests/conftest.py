import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Generator

import pytest

from pipelink.core.models.config import ChannelConfig, PoolConfig
from tests.fake.fake_endpoint import FakeEndpoint
from tests.fake.fake_stream import FakeWriter


@pytest.fixture
def socket_dir() -> Generator[Path, None, None]:
    # pytest's tmp_path is too deep for the AF_UNIX path limit on some hosts
    path = Path(tempfile.mkdtemp(prefix="pl-", dir="/tmp"))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def endpoint_name() -> str:
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def channel_config(socket_dir) -> ChannelConfig:
    return ChannelConfig(
        buffer_size=16,
        max_message_size=64 * 1024,
        connect_timeout=2.0,
        drain_timeout=0.5,
        socket_dir=socket_dir,
    )


@pytest.fixture
def pool_config(endpoint_name, channel_config) -> PoolConfig:
    return PoolConfig(
        name=endpoint_name,
        max_instances=10,
        rearm_listeners=False,
        backlog=4,
        channel=channel_config,
    )


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
def writer() -> FakeWriter:
    return FakeWriter()
