"""
OSC message decoding.

Fields and bundle framing are read with python-osc. On top of that this
module decides which messages the relay accepts:

- Tagged (primary): the address is followed by a type tag string starting
  with ',' and one value per tag. Only tags with a JSON form are accepted;
  python-osc would log and skip the others, here they reject the message.
- Bare (fallback): the address is followed directly by big-endian float32
  words, as sent by old OSC 1.0 senders that omit the type tag string.

Bundles ('#bundle') are unpacked into their contained messages.
"""

import math
import struct
from typing import Callable, Dict, List, NamedTuple, Tuple, Union

from pythonosc import osc_bundle
from pythonosc.parsing import osc_types

from .exceptions import DecodeError

ArgValue = Union[float, int, str, bool, None]


class OscMessage(NamedTuple):
    """A decoded OSC message."""
    address: str
    args: Tuple[ArgValue, ...]


def _widen_float32(value: float) -> float:
    """
    Return the shortest decimal that maps back to the same float32, so 0.523
    is relayed as 0.523 rather than 0.5230000019073486.
    """
    if not math.isfinite(value):
        return value

    raw = struct.pack('>f', value)
    for precision in range(6, 10):
        candidate = float(f"{value:.{precision}g}")
        try:
            if struct.pack('>f', candidate) == raw:
                return candidate
        except (OverflowError, struct.error):
            continue

    return value


def _read_string(data: bytes, offset: int) -> Tuple[str, int]:
    try:
        return osc_types.get_string(data, offset)
    except UnicodeDecodeError as e:
        raise DecodeError(f"Invalid UTF-8 string at offset {offset}: {e}")


def _read_float(data: bytes, offset: int) -> Tuple[float, int]:
    value, offset = osc_types.get_float(data, offset)
    return _widen_float32(value), offset


def _read_char(data: bytes, offset: int) -> Tuple[str, int]:
    code, offset = osc_types.get_int(data, offset)
    try:
        return chr(code), offset
    except (ValueError, OverflowError):
        raise DecodeError(f"Invalid character code: {code}")


# Tags that carry a payload
_TAG_READERS: Dict[str, Callable[[bytes, int], Tuple[ArgValue, int]]] = {
    'i': osc_types.get_int,
    'h': osc_types.get_int64,
    'f': _read_float,
    'd': osc_types.get_double,
    's': _read_string,
    'S': _read_string,
    'c': _read_char,
}

# Tags whose value is implied by the tag alone
_TAG_CONSTANTS: Dict[str, ArgValue] = {
    'T': True,
    'F': False,
    'N': None,
}


def _decode_tagged_args(data: bytes, offset: int) -> List[ArgValue]:
    type_tags, offset = _read_string(data, offset)

    args: List[ArgValue] = []
    for tag in type_tags[1:]:
        if tag in _TAG_CONSTANTS:
            args.append(_TAG_CONSTANTS[tag])
        elif tag in _TAG_READERS:
            value, offset = _TAG_READERS[tag](data, offset)
            args.append(value)
        else:
            raise DecodeError(f"Unsupported OSC type tag: {tag!r}")

    return args


def _decode_bare_args(data: bytes, offset: int) -> List[ArgValue]:
    remainder = len(data) - offset
    if remainder % 4:
        raise DecodeError(f"Untagged arguments are not 32-bit aligned ({remainder} bytes)")

    args: List[ArgValue] = []
    while offset < len(data):
        value, offset = _read_float(data, offset)
        args.append(value)
    return args


def decode_message(data: bytes) -> OscMessage:
    """
    Decode a single OSC message.

    Args:
        data: Raw datagram bytes

    Returns:
        OscMessage with the address and arguments in wire order

    Raises:
        DecodeError: If the datagram is not a well-formed OSC message
    """
    if not data:
        raise DecodeError("Empty datagram")

    if osc_bundle.OscBundle.dgram_is_bundle(data):
        raise DecodeError("Datagram is a bundle, not a message")

    try:
        address, offset = _read_string(data, 0)
        if not address.startswith("/"):
            raise DecodeError(f"OSC address must start with '/': {address!r}")

        if offset == len(data):
            args: List[ArgValue] = []
        elif data[offset:offset + 1] == b",":
            args = _decode_tagged_args(data, offset)
        else:
            args = _decode_bare_args(data, offset)
    except osc_types.ParseError as e:
        raise DecodeError(f"Malformed OSC message: {e}")

    return OscMessage(address, tuple(args))


def _flatten(bundle: osc_bundle.OscBundle) -> List[OscMessage]:
    messages: List[OscMessage] = []
    for content in bundle:
        if isinstance(content, osc_bundle.OscBundle):
            messages.extend(_flatten(content))
        else:
            # python-osc skips tags it does not know; decode again to reject them
            messages.append(decode_message(content.dgram))
    return messages


def decode_packet(data: bytes) -> List[OscMessage]:
    """
    Decode an OSC packet, which is either a message or a bundle.

    Bundle elements are flattened in order; the bundle time tag is ignored
    since messages are relayed immediately. Elements inside a bundle must
    carry a type tag string.

    Raises:
        DecodeError: If the packet or any bundle element is malformed
    """
    if not osc_bundle.OscBundle.dgram_is_bundle(data):
        return [decode_message(data)]

    try:
        bundle = osc_bundle.OscBundle(data)
    except (osc_bundle.ParseError, UnicodeDecodeError) as e:
        raise DecodeError(f"Malformed OSC bundle: {e}")
    except RecursionError:
        raise DecodeError("Bundles nested too deeply")

    return _flatten(bundle)
