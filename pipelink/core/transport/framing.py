import struct

from pipelink.core.errors import FramingError

HEADER = struct.Struct("!I")  # uint32 big-endian (network order)
"""
Every message travels as a 4-byte big-endian payload length followed by
the UTF-8 encoded payload. Unix stream sockets carry no message boundaries
of their own, so this header is the compatibility contract between client
and server channels.
"""

ATTACH_ACK = HEADER.pack(1) + b"\x06"
"""
First frame of every connection, written by the server channel that adopts
it. A client reports itself connected only once it has read this frame, so
a connection still waiting in the backlog for a free server instance does
not count as connected.
"""


def encode_frame(message: str) -> bytes:
    payload = message.encode("utf-8")
    return HEADER.pack(len(payload)) + payload


class FrameDecoder:
    """
    Reassembles complete messages from arbitrarily fragmented reads.

    Bytes handed to `feed()` are appended to an accumulator. As long as the
    current frame is incomplete nothing is returned and the next read simply
    appends more bytes. Once a frame is complete its payload is decoded,
    trailing NUL padding is stripped, and the accumulator restarts from the
    bytes that follow, so consecutive messages never bleed into each other.
    A single read may complete several frames; they are returned in order.

    The decoder is owned by one channel read loop and is not thread-safe.
    """
    def __init__(self, max_message_size: int) -> None:
        self._max_message_size = max_message_size
        self._buffer = bytearray()
        self._expected_length: int | None = None

    @property
    def pending(self) -> int:
        """Number of bytes held for the message in progress."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[str]:
        self._buffer.extend(data)
        messages: list[str] = []

        while True:
            if self._expected_length is None:
                if len(self._buffer) < HEADER.size:
                    return messages

                self._expected_length = HEADER.unpack_from(self._buffer)[0]
                del self._buffer[:HEADER.size]

                if self._expected_length > self._max_message_size:
                    raise FramingError(
                        f"Message of {self._expected_length} bytes exceeds "
                        f"the {self._max_message_size} bytes limit"
                    )

            if len(self._buffer) < self._expected_length:
                return messages

            payload = bytes(self._buffer[:self._expected_length])
            del self._buffer[:self._expected_length]
            self._expected_length = None

            messages.append(self._decode(payload))

    @staticmethod
    def _decode(payload: bytes) -> str:
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise FramingError(f"Invalid UTF-8 payload: {ex}") from ex

        return text.rstrip("\0")
