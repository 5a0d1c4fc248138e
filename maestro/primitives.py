"""
OSC binary primitives.

All multi-byte numbers are big-endian. Strings and blobs are padded with NUL
bytes to a 4-byte boundary. Readers take ``(data, offset)`` and return
``(value, new_offset)``; every read is checked against the buffer length and
raises TruncatedPacketError instead of running off the end.

Time tags use the NTP layout: 32-bit seconds since 1900-01-01 and a 32-bit
fraction. The reserved value ``seconds=0, fraction=1`` means "immediately"
and maps to the IMMEDIATE sentinel in both directions.
"""

import math
import struct
from typing import Optional, Tuple, Union

from maestro.errors import DecodingError, EncodingError, TruncatedPacketError

Buffer = Union[bytes, bytearray]

# Seconds between the NTP epoch (1900-01-01) and the Unix epoch (1970-01-01)
NTP_DELTA = 2208988800
NTP_FRACTION = 2 ** 32

_INT32 = struct.Struct(">i")
_UINT32 = struct.Struct(">I")
_FLOAT32 = struct.Struct(">f")
_TIMETAG = struct.Struct(">II")


class _Immediate:
    """Sentinel time tag meaning "execute on receipt"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "IMMEDIATE"

    def __reduce__(self):
        return (_Immediate, ())


IMMEDIATE = _Immediate()
IMMEDIATE_BYTES = _TIMETAG.pack(0, 1)


def pad_length(length: int) -> int:
    """Round ``length`` up to the next multiple of 4."""
    return (length + 3) & ~3


def _require(data: Buffer, offset: int, needed: int, field: str) -> None:
    if offset < 0 or offset + needed > len(data):
        raise TruncatedPacketError(field, offset, needed, max(0, len(data) - offset))


# ============================================================================
# ENCODERS
# ============================================================================

def encode_int32(value: int) -> bytes:
    try:
        return _INT32.pack(value)
    except struct.error as e:
        raise EncodingError(f"Value {value!r} does not fit in int32") from e


def encode_float32(value: float) -> bytes:
    try:
        return _FLOAT32.pack(value)
    except (struct.error, OverflowError) as e:
        raise EncodingError(f"Value {value!r} does not fit in float32") from e


def encode_string(value: str) -> bytes:
    """Encode a string with one NUL terminator, padded to 4 bytes.

    >>> encode_string("/abc")
    b'/abc\\x00\\x00\\x00\\x00'
    """
    if "\x00" in value:
        raise EncodingError(f"OSC string must not contain NUL: {value!r}")
    raw = value.encode("utf-8") + b"\x00"
    return raw.ljust(pad_length(len(raw)), b"\x00")


def encode_blob(value: Buffer) -> bytes:
    """Encode a blob as 4-byte length, bytes, then padding to 4 bytes."""
    raw = bytes(value)
    return encode_int32(len(raw)) + raw.ljust(pad_length(len(raw)), b"\x00")


def encode_timetag(value: Optional[Union[float, _Immediate]]) -> bytes:
    """Encode Unix seconds as an 8-byte NTP time tag.

    IMMEDIATE, None and non-finite numbers encode to the reserved
    "immediately" value 00 00 00 00 00 00 00 01.
    """
    if value is None or value is IMMEDIATE:
        return IMMEDIATE_BYTES
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EncodingError(f"Don't know how to encode time tag {value!r}")
    if not math.isfinite(value):
        return IMMEDIATE_BYTES

    whole = math.floor(value)
    fraction = int((value - whole) * NTP_FRACTION)
    seconds = whole + NTP_DELTA
    if not 0 <= seconds < NTP_FRACTION:
        raise EncodingError(f"Time tag {value!r} is outside the NTP era")
    return _TIMETAG.pack(seconds, fraction)


# ============================================================================
# READERS
# ============================================================================

def read_int32(data: Buffer, offset: int) -> Tuple[int, int]:
    _require(data, offset, 4, "int32")
    return _INT32.unpack_from(data, offset)[0], offset + 4


def read_uint32(data: Buffer, offset: int) -> Tuple[int, int]:
    _require(data, offset, 4, "uint32")
    return _UINT32.unpack_from(data, offset)[0], offset + 4


def read_float32(data: Buffer, offset: int) -> Tuple[float, int]:
    _require(data, offset, 4, "float32")
    return _FLOAT32.unpack_from(data, offset)[0], offset + 4


def read_bytes(data: Buffer, offset: int, length: int) -> Tuple[bytes, int]:
    _require(data, offset, length, "bytes")
    return bytes(data[offset:offset + length]), offset + length


def read_string(data: Buffer, offset: int) -> Tuple[str, int]:
    """Read a NUL-terminated, 4-byte padded UTF-8 string."""
    _require(data, offset, 1, "string")
    terminator = data.find(b"\x00", offset)
    if terminator < 0:
        raise TruncatedPacketError("string terminator", offset, len(data) - offset + 1,
                                   len(data) - offset)

    padded = pad_length(terminator - offset + 1)
    _require(data, offset, padded, "string padding")

    try:
        value = bytes(data[offset:terminator]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodingError(f"Invalid UTF-8 in string at offset {offset}") from e
    return value, offset + padded


def read_blob(data: Buffer, offset: int) -> Tuple[bytes, int]:
    """Read a length-prefixed, 4-byte padded blob."""
    length, offset = read_int32(data, offset)
    if length < 0:
        raise DecodingError(f"Negative blob length {length} at offset {offset - 4}")

    padded = pad_length(length)
    _require(data, offset, padded, "blob")
    return bytes(data[offset:offset + length]), offset + padded


def read_timetag(data: Buffer, offset: int) -> Tuple[Union[float, _Immediate], int]:
    """Read an NTP time tag as Unix seconds, or IMMEDIATE for 0x1."""
    _require(data, offset, 8, "time tag")
    seconds, fraction = _TIMETAG.unpack_from(data, offset)
    if seconds == 0 and fraction == 1:
        return IMMEDIATE, offset + 8
    return (seconds - NTP_DELTA) + fraction / NTP_FRACTION, offset + 8
