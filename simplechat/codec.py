from __future__ import annotations

import struct
from typing import BinaryIO

import cbor2

from .constants import FRAME_HEADER_SIZE, MAX_FRAME_BYTES, MAX_MESSAGE_BYTES

_HEADER = struct.Struct(">I")


class FrameError(ValueError):
    """A frame on the wire could not be turned into a chat message."""


def encode(text: str) -> bytes:
    return cbor2.dumps(text)


def decode(b: bytes):
    return cbor2.loads(b)


def message_fits(text: str) -> bool:
    """True if ``text`` is short enough to send and still be rebroadcast."""
    return len(encode(text)) <= MAX_MESSAGE_BYTES


def pack_frame(text: str) -> bytes:
    if not isinstance(text, str):
        raise TypeError("chat messages must be str")
    payload = encode(text)
    if len(payload) > MAX_FRAME_BYTES:
        raise FrameError(f"message too large ({len(payload)} bytes)")
    return _HEADER.pack(len(payload)) + payload


def _read_exact(fp: BinaryIO, n: int) -> bytes:
    data = fp.read(n)
    if data is None:
        data = b""
    if len(data) < n:
        raise EOFError(f"stream ended after {len(data)} of {n} bytes")
    return data


def read_frame(fp: BinaryIO, limit: int = MAX_FRAME_BYTES) -> str:
    """Read one framed message from a binary stream.

    Raises EOFError at end of stream and FrameError for anything that is not
    a well formed text message of at most ``limit`` payload bytes.
    """
    (size,) = _HEADER.unpack(_read_exact(fp, FRAME_HEADER_SIZE))
    if size > limit:
        raise FrameError(f"frame too large ({size} bytes)")

    payload = _read_exact(fp, size)
    try:
        obj = decode(payload)
    except cbor2.CBORDecodeError as e:
        raise FrameError(f"bad frame: {e}") from e

    if not isinstance(obj, str):
        raise FrameError(f"expected text, got {type(obj).__name__}")
    return obj
