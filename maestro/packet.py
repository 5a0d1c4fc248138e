"""
Sanitized packet decoding.

The rest of the application never sees Message/Bundle objects from the
wire. A decoded message becomes a flat list ``[address, value1, ...]`` and
a bundle becomes ``{"timetag": ..., "elements": [...]}`` with its elements
sanitized recursively.
"""

from typing import Any, Dict, List, Union

from maestro.codec import Packet, from_buffer
from maestro.errors import DecodingError
from maestro.primitives import Buffer
from maestro.types import Bundle, Message

Decoded = Union[List[Any], Dict[str, Any]]


def sanitize(packet: Packet) -> Decoded:
    """Convert a decoded Message or Bundle to plain Python values."""
    if isinstance(packet, Bundle):
        return {
            "timetag": packet.timetag,
            "elements": [sanitize(element) for element in packet.elements],
        }
    if isinstance(packet, Message):
        return [packet.address, *packet.args]
    raise DecodingError(f"Malformed packet: {packet!r}")


def decode(data: Buffer) -> Decoded:
    """Decode a datagram to its sanitized form.

    Codec errors propagate to the caller unchanged.
    """
    return sanitize(from_buffer(data))


def is_bundle(decoded: Decoded) -> bool:
    return isinstance(decoded, dict)


def format_datagram(data: Buffer) -> str:
    """Hex and ASCII dump of a datagram, 16 bytes per line.

    Example:
        size 12
           0   2f 78 72 65  6d 6f 74 65  00 00 00 00   |/xremote....|
    """
    lines = [f"size {len(data)}"]
    for index in range(0, len(data), 16):
        row = bytes(data[index:index + 16])
        hex_blocks = [
            " ".join(f"{byte:02x}" for byte in row[start:start + 4])
            for start in range(0, len(row), 4)
        ]
        ascii_block = "".join(chr(byte) if 31 < byte < 127 else "." for byte in row)
        lines.append(f"{index: >4}   {'  '.join(hex_blocks): <53}|{ascii_block}|")
    return "\n".join(lines)
