class PipeLinkError(Exception):
    """Base class for every error raised by the pipelink transport."""


class EndpointConnectError(PipeLinkError, ConnectionError):
    """
    Raised when a channel cannot be attached to an endpoint.

    Covers a client connect that timed out or was refused, and a server
    listener that could not be armed because the endpoint is already owned
    by another process or all of its instances are busy.
    """


class TransportClosedError(PipeLinkError, OSError):
    """Raised when a read or write is attempted on a channel that is not connected."""


class DrainError(PipeLinkError):
    """Raised when outstanding outbound bytes could not be flushed before close."""


class FramingError(PipeLinkError):
    """Raised when the inbound byte stream violates the framing contract."""


class BroadcastFailure(PipeLinkError):
    """
    Raised when one recipient of a pool-wide send fails.

    The broadcast stops at the failing channel: `delivered` lists the
    channels that already received the message, in the order they were
    sent to. The original error is available as `__cause__`.
    """
    def __init__(self, channel_id: str, delivered: list[str]) -> None:
        super().__init__(f"Broadcast failed on channel {channel_id}")
        self.channel_id = channel_id
        self.delivered = delivered
