from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Connected:
    """A peer attached to the channel identified by `channel_id`."""
    channel_id: str


@dataclass(frozen=True, slots=True)
class Disconnected:
    """The peer of the channel identified by `channel_id` went away."""
    channel_id: str


@dataclass(frozen=True, slots=True)
class MessageReceived:
    """
    One complete inbound message.

    `message` is the decoded text of exactly one frame: consumers never see
    a partial message.
    """
    channel_id: str
    message: str


LifecycleEvent = Connected | Disconnected | MessageReceived
