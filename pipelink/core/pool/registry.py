import threading
from dataclasses import dataclass, field

from pipelink.core.channel.server import ServerChannel
from pipelink.core.helpers.events import Registration


@dataclass
class RegistryEntry:
    channel: ServerChannel
    registrations: list[Registration] = field(default_factory=list)

    def release(self) -> None:
        for registration in self.registrations:
            registration.release()
        self.registrations.clear()


class ChannelRegistry:
    """
    Lock-protected mapping of channel id to server channel.

    The registry is mutated from the pool's own calls and from event
    handlers running inside channel read loops, and it may be read from
    delivery worker threads, so every access goes through one lock.
    Iteration always works on a snapshot taken under the lock: callers may
    await while walking it without holding the lock.

    Each entry keeps the tokens of the subscriptions the pool holds on its
    channel. Removing an entry releases them, which guarantees that no
    event of a removed channel reaches the pool afterwards.
    """
    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._entries

    def add(self, channel: ServerChannel, registrations: list[Registration]) -> None:
        with self._lock:
            if channel.id in self._entries:
                raise KeyError(f"Channel {channel.id} is already registered")
            self._entries[channel.id] = RegistryEntry(channel, list(registrations))

    def get(self, channel_id: str) -> ServerChannel | None:
        with self._lock:
            entry = self._entries.get(channel_id)
        return entry.channel if entry else None

    def remove(self, channel_id: str) -> ServerChannel | None:
        """
        Remove an entry and release its subscriptions. Returns the removed
        channel, or None when it was not registered.
        """
        with self._lock:
            entry = self._entries.pop(channel_id, None)

        if entry is None:
            return None

        entry.release()
        return entry.channel

    def snapshot(self) -> list[ServerChannel]:
        with self._lock:
            return [entry.channel for entry in self._entries.values()]

    def drain(self) -> list[ServerChannel]:
        """
        Remove every entry, releasing all subscriptions, and return the
        channels in registration order.
        """
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        for entry in entries:
            entry.release()
        return [entry.channel for entry in entries]
