"""Exception hierarchy for the OSC engine.

Codec errors are fatal to a single send or a single packet; the transport
catches decode failures per datagram and keeps listening.
"""


class OSCError(Exception):
    """Base class for all maestro OSC errors."""


class EncodingError(OSCError, ValueError):
    """A native value cannot be encoded as an OSC argument or packet."""


class DecodingError(OSCError, ValueError):
    """A datagram cannot be decoded (unknown tag, bad marker, bad text)."""


class MalformedPacketError(DecodingError):
    """The packet structure is invalid (missing ',' or '/' prefix)."""


class TruncatedPacketError(DecodingError):
    """The buffer ends before the field being read."""

    def __init__(self, field: str, offset: int, needed: int, available: int):
        self.field = field
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(
            f"Truncated packet: {field} at offset {offset} needs {needed} "
            f"bytes, {available} available"
        )


class TransportError(OSCError):
    """The socket is not bound, already closed, or the OS refused the send."""
