"""
OSC value/type model.

Maps native Python values to OSC type tags and payload bytes, and back.

Implicit typing (no tag given):
    bool             -> T / F (no payload)
    int              -> i
    float            -> f
    str              -> s
    bytes-like       -> b
    Midi             -> m

Explicit typing uses Argument(type, value) or a mapping with "type" and
"value" keys. The "d"/"double" type is accepted but always narrowed to a
32-bit float and tagged "f": the engine has no float64 on the wire, and
consoles such as the X32 expect "f" for every continuous parameter. Values
lose precision accordingly.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from maestro import primitives
from maestro.errors import DecodingError, EncodingError
from maestro.primitives import IMMEDIATE, Buffer

__all__ = [
    "IMMEDIATE",
    "Argument",
    "Bundle",
    "Message",
    "Midi",
    "decode_argument",
    "encode_argument",
    "from_native_value",
]


@dataclass(frozen=True)
class Midi:
    """A 4-byte MIDI message argument: port id, status byte, two data bytes."""
    port: int = 0
    status: int = 0
    data1: int = 0
    data2: int = 0

    def to_bytes(self) -> bytes:
        try:
            return bytes((self.port, self.status, self.data1, self.data2))
        except ValueError as e:
            raise EncodingError(f"MIDI fields must be bytes (0-255): {self!r}") from e


@dataclass
class Argument:
    """An explicitly typed OSC argument.

    ``type`` is either a tag character ("i", "f", "s", "b", "d", "T", "F",
    "m") or its long alias ("integer", "float", "string", "blob", "double",
    "boolean", "midi").
    """
    type: str
    value: Any


@dataclass
class Message:
    """An OSC message: address plus ordered arguments."""
    address: str
    args: List[Any] = field(default_factory=list)

    def append(self, value: Any) -> None:
        """Append one argument; lists and tuples are flattened."""
        if isinstance(value, (list, tuple)):
            for item in value:
                self.append(item)
        else:
            self.args.append(value)


@dataclass
class Bundle:
    """A time-tagged container of messages and nested bundles."""
    timetag: Any = IMMEDIATE
    elements: List[Union[Message, "Bundle"]] = field(default_factory=list)


# Long type names accepted for explicit arguments, mapped to canonical tags
TYPE_ALIASES: Dict[str, str] = {
    "integer": "i",
    "float": "f",
    "string": "s",
    "blob": "b",
    "double": "d",
    "boolean": "T",
    "midi": "m",
}


def _midi_bytes(value: Any) -> bytes:
    if isinstance(value, Midi):
        return value.to_bytes()
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) != 4:
            raise EncodingError(f"MIDI message must be exactly 4 bytes, got {len(raw)}")
        return raw
    if isinstance(value, Mapping):
        fields = {name: value.get(name) or 0 for name in ("port", "status", "data1", "data2")}
        return Midi(**fields).to_bytes()
    if value is not None and all(hasattr(value, name) for name in ("port", "status", "data1", "data2")):
        return Midi(value.port or 0, value.status or 0, value.data1 or 0, value.data2 or 0).to_bytes()
    raise EncodingError(
        f"MIDI value must be 4 bytes or have port, status, data1, data2: {value!r}"
    )


def _encode_tagged(tag: str, value: Any) -> Tuple[str, bytes]:
    tag = TYPE_ALIASES.get(tag, tag)

    if tag == "i":
        if isinstance(value, bool) or not isinstance(value, int):
            raise EncodingError(f"Integer argument expected, got {value!r}")
        return "i", primitives.encode_int32(value)
    if tag in ("f", "d"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EncodingError(f"Numeric argument expected, got {value!r}")
        # no float64 on the wire
        return "f", primitives.encode_float32(value)
    if tag == "s":
        if not isinstance(value, str):
            raise EncodingError(f"String argument expected, got {value!r}")
        return "s", primitives.encode_string(value)
    if tag == "b":
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise EncodingError(f"Blob argument expected, got {value!r}")
        return "b", primitives.encode_blob(value)
    if tag in ("T", "F"):
        return ("T" if value else "F"), b""
    if tag == "m":
        return "m", _midi_bytes(value)

    raise EncodingError(f"Unknown argument type: {tag!r}")


def from_native_value(value: Any) -> Argument:
    """Resolve a native or explicitly typed value to a tagged Argument.

    Raises:
        EncodingError: If no type can be inferred or the explicit type is unknown
    """
    if isinstance(value, Argument):
        tag, _ = _encode_tagged(value.type, value.value)
        return Argument(tag, value.value)
    if isinstance(value, Mapping):
        if "type" not in value or "value" not in value:
            raise EncodingError(f"Don't know how to encode object {value!r}")
        tag, _ = _encode_tagged(value["type"], value["value"])
        return Argument(tag, value["value"])

    if isinstance(value, bool):
        return Argument("T" if value else "F", value)
    if isinstance(value, int):
        return Argument("i", value)
    if isinstance(value, float):
        return Argument("f", value)
    if isinstance(value, str):
        return Argument("s", value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Argument("b", bytes(value))
    if isinstance(value, Midi):
        return Argument("m", value)

    raise EncodingError(f"Don't know how to encode argument: {value!r}")


def encode_argument(value: Any) -> Tuple[str, bytes]:
    """Encode a native or tagged value to ``(tag, payload)``."""
    argument = from_native_value(value)
    return _encode_tagged(argument.type, argument.value)


# ============================================================================
# DECODING
# ============================================================================

def _decode_true(data: Buffer, offset: int) -> Tuple[bool, int]:
    return True, offset


def _decode_false(data: Buffer, offset: int) -> Tuple[bool, int]:
    return False, offset


def _decode_null(data: Buffer, offset: int) -> Tuple[None, int]:
    return None, offset


def _decode_midi(data: Buffer, offset: int) -> Tuple[bytes, int]:
    return primitives.read_bytes(data, offset, 4)


_DECODERS: Dict[str, Callable[[Buffer, int], Tuple[Any, int]]] = {
    "i": primitives.read_int32,
    "f": primitives.read_float32,
    "s": primitives.read_string,
    "b": primitives.read_blob,
    "T": _decode_true,
    "F": _decode_false,
    "N": _decode_null,
    "m": _decode_midi,
}


def decode_argument(tag: str, data: Buffer, offset: int) -> Tuple[Any, int]:
    """Decode one argument payload for ``tag`` starting at ``offset``.

    Raises:
        DecodingError: If the tag is not supported
        TruncatedPacketError: If the payload runs past the buffer
    """
    decoder = _DECODERS.get(tag)
    if decoder is None:
        raise DecodingError(f"I don't understand the argument code {tag!r}")
    return decoder(data, offset)
