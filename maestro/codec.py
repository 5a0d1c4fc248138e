"""
OSC message and bundle codec.

Wire layout:
    message: <padded address> <padded ",tags"> <argument payloads...>
    bundle:  "#bundle\\0" <8-byte NTP time tag> (<int32 size> <element>)*

to_buffer() and from_buffer() are the only public entry points; they pick
the message or bundle codec. Decoding is a pair of mutually recursive
functions over (buffer, offset) that return the new offset, so a bundle
element is decoded by dispatching again on the "#bundle" marker.
"""

from typing import Tuple, Union

from maestro import primitives
from maestro.errors import DecodingError, EncodingError, MalformedPacketError
from maestro.primitives import Buffer
from maestro.types import Bundle, Message, decode_argument, encode_argument

BUNDLE_MARKER = b"#bundle\x00"

# Deepest bundle nesting accepted on decode
MAX_BUNDLE_DEPTH = 32

Packet = Union[Message, Bundle]


# ============================================================================
# ENCODING
# ============================================================================

def encode_message(message: Message) -> bytes:
    """Encode a Message to its datagram bytes.

    Raises:
        EncodingError: If the address is invalid or an argument can't be encoded
    """
    address = message.address
    if not isinstance(address, str) or not address.startswith("/"):
        raise EncodingError(f"OSC address must be a string starting with '/': {address!r}")

    encoded = [encode_argument(arg) for arg in message.args]
    type_tags = "," + "".join(tag for tag, _ in encoded)

    return b"".join([
        primitives.encode_string(address),
        primitives.encode_string(type_tags),
        *(payload for _, payload in encoded),
    ])


def encode_bundle(bundle: Bundle) -> bytes:
    """Encode a Bundle, each element prefixed with its int32 byte length."""
    parts = [BUNDLE_MARKER, primitives.encode_timetag(bundle.timetag)]
    for element in bundle.elements:
        encoded = to_buffer(element)
        parts.append(primitives.encode_int32(len(encoded)))
        parts.append(encoded)
    return b"".join(parts)


def to_buffer(packet: Packet) -> bytes:
    """Encode a Message or Bundle."""
    if isinstance(packet, Bundle):
        return encode_bundle(packet)
    if isinstance(packet, Message):
        return encode_message(packet)
    raise EncodingError(f"That message just doesn't seem right: {packet!r}")


# ============================================================================
# DECODING
# ============================================================================

def is_bundle(data: Buffer) -> bool:
    return len(data) >= 8 and bytes(data[:8]) == BUNDLE_MARKER


def decode_message(data: Buffer, offset: int = 0) -> Tuple[Message, int]:
    """Decode one message starting at ``offset``.

    Returns:
        Tuple of (message, offset after the last argument)

    Raises:
        MalformedPacketError: Address without '/' or type tags without ','
        TruncatedPacketError: Any field runs past the end of ``data``
        DecodingError: Unknown type tag or invalid UTF-8
    """
    address, offset = primitives.read_string(data, offset)
    if not address.startswith("/"):
        raise MalformedPacketError(f"Malformed packet: address {address!r} does not start with '/'")

    type_tags, offset = primitives.read_string(data, offset)
    if not type_tags.startswith(","):
        raise MalformedPacketError(f"Malformed packet: type tags {type_tags!r} do not start with ','")

    args = []
    for tag in type_tags[1:]:
        value, offset = decode_argument(tag, data, offset)
        args.append(value)

    return Message(address, args), offset


def decode_bundle(data: Buffer, offset: int = 0, depth: int = 0) -> Tuple[Bundle, int]:
    """Decode a bundle occupying ``data[offset:]``.

    Elements are read until the buffer is exhausted; a failure in any
    element fails the whole bundle. ``depth`` is the number of enclosing
    bundles; more than MAX_BUNDLE_DEPTH levels of nesting is rejected.
    """
    if bytes(data[offset:offset + 8]) != BUNDLE_MARKER:
        raise DecodingError("Not a bundle: missing '#bundle' marker")
    if depth >= MAX_BUNDLE_DEPTH:
        raise DecodingError(f"Bundle nesting exceeds {MAX_BUNDLE_DEPTH} levels")

    timetag, offset = primitives.read_timetag(data, offset + 8)

    elements = []
    while offset < len(data):
        size, offset = primitives.read_int32(data, offset)
        if size < 0:
            raise DecodingError(f"Negative bundle element size {size} at offset {offset - 4}")
        chunk, offset = primitives.read_bytes(data, offset, size)
        element, _ = decode_packet(chunk, depth=depth + 1)
        elements.append(element)

    return Bundle(timetag, elements), offset


def decode_packet(data: Buffer, offset: int = 0, depth: int = 0) -> Tuple[Packet, int]:
    """Decode a message or bundle, dispatching on the bundle marker."""
    if is_bundle(data[offset:offset + 8]):
        return decode_bundle(data, offset, depth)
    return decode_message(data, offset)


def from_buffer(data: Buffer) -> Packet:
    """Decode a whole datagram into a Message or Bundle."""
    if isinstance(data, memoryview):
        data = data.tobytes()
    packet, _ = decode_packet(data)
    return packet
