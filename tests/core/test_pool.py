import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field

import pytest

from pipelink.core.delivery import InlineDelivery
from pipelink.core.errors import BroadcastFailure, EndpointConnectError, TransportClosedError
from pipelink.core.models.event import Connected, Disconnected, MessageReceived
from pipelink.core.models.config import PoolConfig
from pipelink.core.models.result import TaskResult
from pipelink.core.pool.manager import ConnectionPool
from pipelink.core.transport.framing import encode_frame
from tests.fake.fake_endpoint import FakeEndpoint
from tests.fake.fake_stream import FakeWriter, make_reader
from tests.helpers import wait_until


@dataclass(eq=False)
class StubChannel:
    id: str
    is_connected: bool = True
    fail_send: bool = False
    fail_stop: bool = False
    sent: list[str] = field(default_factory=list)
    stopped: bool = False

    async def send_message(self, message: str) -> TaskResult:
        if self.fail_send:
            raise TransportClosedError(f"{self.id} is gone")
        self.sent.append(message)
        return TaskResult(is_success=True)

    async def stop(self) -> None:
        self.stopped = True
        if self.fail_stop:
            raise RuntimeError("teardown exploded")


def make_pool(pool_config, endpoint: FakeEndpoint, **overrides) -> ConnectionPool:
    config = dataclasses.replace(pool_config, **overrides)
    pool = ConnectionPool(config=config, delivery=InlineDelivery())
    pool._endpoint = endpoint
    return pool


class PoolEvents:
    def __init__(self, pool: ConnectionPool) -> None:
        self.connected: list[Connected] = []
        self.disconnected: list[Disconnected] = []
        self.messages: list[MessageReceived] = []
        pool.connected.subscribe(self.connected.append)
        pool.disconnected.subscribe(self.disconnected.append)
        pool.message_received.subscribe(self.messages.append)


@pytest.mark.ut
@pytest.mark.asyncio
async def test_start_listener_registers_channel(pool_config, endpoint):
    pool = make_pool(pool_config, endpoint)
    pool.start()
    pool.start()

    channel = await pool.start_listener()

    assert len(pool) == 1
    assert pool.channels == [channel]
    assert pool.listening_count == 1
    assert pool.connected_count == 0
    assert endpoint.armed == [channel]

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_listener_refused_at_capacity(pool_config):
    endpoint = FakeEndpoint(max_instances=1)
    pool = make_pool(pool_config, endpoint)

    first = await pool.start_listener()
    with pytest.raises(EndpointConnectError):
        await pool.start_listener()

    assert pool.channels == [first]
    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_events_reposted_by_pool(pool_config, endpoint, writer):
    pool = make_pool(pool_config, endpoint)
    events = PoolEvents(pool)
    channel = await pool.start_listener()

    endpoint.connect(make_reader(encode_frame("ping"), encode_frame("pong")), writer)

    await wait_until(lambda: events.disconnected)

    assert events.connected == [Connected(channel_id=channel.id)]
    assert [(e.channel_id, e.message) for e in events.messages] == [
        (channel.id, "ping"),
        (channel.id, "pong"),
    ]
    assert events.disconnected == [Disconnected(channel_id=channel.id)]

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_disconnect_unregisters_channel(pool_config, endpoint, writer):
    pool = make_pool(pool_config, endpoint)
    events = PoolEvents(pool)
    channel = await pool.start_listener()

    endpoint.connect(make_reader(), writer)

    await wait_until(lambda: len(pool) == 0)
    await asyncio.sleep(0.05)

    assert len(events.disconnected) == 1
    assert len(channel.connected) == 0
    assert len(channel.disconnected) == 0
    assert len(channel.message_received) == 0
    assert channel.id not in endpoint.instances

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_default_config_keeps_registry_on_connect(endpoint_name, channel_config, endpoint, writer):
    pool = ConnectionPool(
        config=PoolConfig(name=endpoint_name, channel=channel_config),
        delivery=InlineDelivery(),
    )
    pool._endpoint = endpoint
    channel = await pool.start_listener()

    endpoint.connect(make_reader(eof=False), writer)
    await asyncio.sleep(0.05)

    assert pool.channels == [channel]
    assert pool.connected_count == 1
    assert pool.listening_count == 0
    assert endpoint.armed == []

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_consumed_listener_is_replaced(pool_config, endpoint, writer):
    pool = make_pool(pool_config, endpoint, rearm_listeners=True)
    first = await pool.start_listener()

    endpoint.connect(make_reader(eof=False), writer)

    await wait_until(lambda: pool.listening_count == 1)
    assert pool.connected_count == 1
    assert len(pool) == 2
    assert first.is_connected
    assert endpoint.armed != [first]

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_listener_rearmed_when_capacity_frees(pool_config, writer):
    endpoint = FakeEndpoint(max_instances=1)
    pool = make_pool(pool_config, endpoint, rearm_listeners=True)
    await pool.start_listener()

    reader = make_reader(eof=False)
    endpoint.connect(reader, writer)
    await asyncio.sleep(0.05)

    assert pool.listening_count == 0
    assert len(pool) == 1

    reader.feed_eof()

    await wait_until(lambda: pool.listening_count == 1 and pool.connected_count == 0)
    assert len(pool) == 1

    await pool.stop()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_broadcast_reaches_connected_channels_in_order(pool_config, endpoint):
    pool = make_pool(pool_config, endpoint)
    a, idle, b = StubChannel("a"), StubChannel("idle", is_connected=False), StubChannel("b")
    for stub in (a, idle, b):
        pool._registry.add(stub, [])

    result = await pool.send_message("hello")

    assert result.is_success
    assert a.sent == ["hello"]
    assert b.sent == ["hello"]
    assert idle.sent == []


@pytest.mark.ut
@pytest.mark.asyncio
async def test_broadcast_stops_at_first_failure(pool_config, endpoint):
    pool = make_pool(pool_config, endpoint)
    a, bad, c = StubChannel("a"), StubChannel("bad", fail_send=True), StubChannel("c")
    for stub in (a, bad, c):
        pool._registry.add(stub, [])

    with pytest.raises(BroadcastFailure) as exc_info:
        await pool.send_message("hello")

    assert exc_info.value.channel_id == "bad"
    assert exc_info.value.delivered == ["a"]
    assert isinstance(exc_info.value.__cause__, TransportClosedError)
    assert c.sent == []
    assert len(pool) == 3


@pytest.mark.ut
@pytest.mark.asyncio
async def test_broadcast_without_channels_succeeds(pool_config, endpoint):
    pool = make_pool(pool_config, endpoint)

    result = await pool.send_message("nobody listens")

    assert result.is_success


@pytest.mark.ut
@pytest.mark.asyncio
async def test_stop_is_fail_soft(pool_config, endpoint, caplog):
    pool = make_pool(pool_config, endpoint)
    broken, healthy = StubChannel("broken", fail_stop=True), StubChannel("healthy")
    pool._registry.add(broken, [])
    pool._registry.add(healthy, [])

    with caplog.at_level(logging.ERROR, logger="core.pool.manager"):
        await pool.stop()

    assert broken.stopped
    assert healthy.stopped
    assert len(pool) == 0
    assert endpoint.closed
    assert "Failed to stop channel broken" in caplog.text

    with pytest.raises(RuntimeError):
        await pool.start_listener()


@pytest.mark.ut
@pytest.mark.asyncio
async def test_stop_closes_live_channels(pool_config, endpoint):
    pool = make_pool(pool_config, endpoint)
    events = PoolEvents(pool)
    await pool.start_listener()
    writer = FakeWriter()
    endpoint.connect(make_reader(eof=False), writer)

    await pool.stop()

    assert writer.is_closing()
    assert len(pool) == 0
    assert events.disconnected == []
