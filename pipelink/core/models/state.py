from enum import StrEnum


class ChannelState(StrEnum):
    """
    Lifecycle of a single channel.

    Server channels go idle -> listening -> connected -> disconnected.
    Client channels skip listening. Any state moves to closed once
    `stop()` has released the transport. There is no transition back to
    listening: a slot that lost its peer is replaced by a new channel.
    """
    idle = "idle"
    listening = "listening"
    connected = "connected"
    disconnected = "disconnected"
    closed = "closed"
