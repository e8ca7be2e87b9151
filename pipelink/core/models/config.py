import uuid
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ChannelConfig:
    """
    Static configuration shared by client and server channels.
    """
    buffer_size: int = 2048
    """
    Size of the fixed read buffer. Each read returns between 1 and
    buffer_size bytes and does not have to align with frame boundaries.
    """

    max_message_size: int = 1 * 1024 * 1024  # 1MB
    """
    Maximum size of an encoded message payload. A frame announcing a
    larger payload closes the connection.
    """

    connect_timeout: float = 300.0
    """
    Maximum time (in seconds) a client waits for the endpoint to accept
    its connection.
    """

    drain_timeout: float = 5.0
    """
    Maximum time (in seconds) `stop()` waits for outstanding outbound
    bytes to be flushed before the transport is released anyway.
    """

    socket_dir: Path | None = None
    """
    Directory holding endpoint sockets. When unset, $XDG_RUNTIME_DIR or
    the system temporary directory is used.
    """


@dataclass(frozen=True)
class PoolConfig:
    """
    Static configuration for a ConnectionPool, fixed at construction.
    """
    name: str = field(default_factory=lambda: str(uuid.uuid4()))
    """
    Endpoint name, unique on the local host. Clients connect with the
    same name.
    """

    max_instances: int = 10
    """
    Maximum number of server channels (listening or connected) the
    endpoint accepts at the same time.
    """

    rearm_listeners: bool = False
    """
    Arm a replacement listening channel whenever one is consumed by a
    peer, and after a disconnect leaves the pool without a listener.
    Off by default: the pool only holds the listeners armed explicitly
    through `start_listener()`.
    """

    backlog: int = 16
    """
    Maximum number of accepted connections waiting for a listening
    channel. Extra connections are closed immediately.
    """

    channel: ChannelConfig = field(default_factory=ChannelConfig)
    """
    Configuration applied to every server channel of the pool.
    """
