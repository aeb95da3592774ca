"""Server List Ping wire format.

Pure encoders/decoders over byte buffers; no socket I/O lives here.

Frame layout (both directions):
    VarInt length | VarInt packet id | payload

A VarInt is base-128, least significant group first, with the high bit of
each byte set when more bytes follow. Values are 32-bit two's complement, so
a VarInt is never longer than 5 bytes.
"""
from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import MalformedResponseError, TruncatedResponseError

VARINT_MAX_BYTES = 5

PACKET_HANDSHAKE = 0x00
PACKET_STATUS_REQUEST = 0x00
PACKET_STATUS_RESPONSE = 0x00

NEXT_STATE_STATUS = 1

# -1 is what clients send when they ping only to learn the server version.
DEFAULT_PROTOCOL_VERSION = -1

# Status JSON is small (favicon included); anything larger is not a status reply.
MAX_FRAME_LENGTH = 2 * 1024 * 1024


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServerStatus:
    online: int
    max: int
    observed_at: datetime = field(default_factory=utc_now)
    version_name: str | None = None
    protocol: int | None = None
    latency_ms: float | None = None


def encode_varint(value: int) -> bytes:
    if not -(1 << 31) <= value < (1 << 32):
        raise ValueError(f"VarInt out of 32-bit range: {value}")
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buf: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode one VarInt starting at ``offset``.

    Returns (value, offset just past the VarInt).
    """
    result = 0
    for i in range(VARINT_MAX_BYTES):
        pos = offset + i
        if pos >= len(buf):
            raise TruncatedResponseError("buffer ended inside a VarInt")
        byte = buf[pos]
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            if result & 0x80000000:
                result -= 1 << 32
            return result, pos + 1
    raise MalformedResponseError(f"VarInt longer than {VARINT_MAX_BYTES} bytes")


def encode_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    return encode_varint(len(raw)) + raw


def decode_string(buf: bytes, offset: int = 0) -> tuple[str, int]:
    length, offset = decode_varint(buf, offset)
    if length < 0:
        raise MalformedResponseError(f"negative string length {length}")
    end = offset + length
    if end > len(buf):
        raise MalformedResponseError(f"string of {length} bytes overruns its frame")
    try:
        return buf[offset:end].decode("utf-8"), end
    except UnicodeDecodeError as e:
        raise MalformedResponseError(f"string is not valid UTF-8: {e}") from e


def frame(packet_id: int, payload: bytes = b"") -> bytes:
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


def handshake_packet(host: str, port: int, protocol_version: int = DEFAULT_PROTOCOL_VERSION) -> bytes:
    payload = (
        encode_varint(protocol_version)
        + encode_string(host)
        + struct.pack(">H", port)
        + encode_varint(NEXT_STATE_STATUS)
    )
    return frame(PACKET_HANDSHAKE, payload)


def status_request_packet() -> bytes:
    return frame(PACKET_STATUS_REQUEST)


def _player_count(players: dict[str, Any], key: str) -> int:
    value = players.get(key)
    # bool is an int subclass; "online": true is not a count.
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedResponseError(f"players.{key} is not an integer: {value!r}")
    if value < 0:
        raise MalformedResponseError(f"players.{key} is negative: {value}")
    return value


def parse_status_payload(text: str, latency_ms: float | None = None) -> ServerStatus:
    """Turn the status JSON document into a ServerStatus."""
    try:
        doc = json.loads(text)
    except ValueError as e:
        raise MalformedResponseError(f"status payload is not JSON: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedResponseError("status payload is not a JSON object")
    players = doc.get("players")
    if not isinstance(players, dict):
        raise MalformedResponseError("status payload has no 'players' object")

    online = _player_count(players, "online")
    maximum = _player_count(players, "max")

    version = doc.get("version") if isinstance(doc.get("version"), dict) else {}
    name = version.get("name")
    proto = version.get("protocol")
    return ServerStatus(
        online=online,
        max=maximum,
        version_name=name if isinstance(name, str) else None,
        protocol=proto if isinstance(proto, int) and not isinstance(proto, bool) else None,
        latency_ms=latency_ms,
    )


def decode_status_body(body: bytes, latency_ms: float | None = None) -> ServerStatus:
    """Decode a status response body (the bytes after the frame length)."""
    try:
        packet_id, offset = decode_varint(body)
        if packet_id != PACKET_STATUS_RESPONSE:
            raise MalformedResponseError(f"unexpected packet id 0x{packet_id & 0xFFFFFFFF:02x}")
        text, _ = decode_string(body, offset)
    except TruncatedResponseError as e:
        # The body was read in full; running out inside it is a framing error.
        raise MalformedResponseError(str(e)) from e
    return parse_status_payload(text, latency_ms=latency_ms)


def decode_status_frame(buf: bytes) -> ServerStatus:
    """Decode a complete length-prefixed status response frame."""
    length, offset = decode_varint(buf)
    check_frame_length(length)
    if len(buf) - offset < length:
        raise TruncatedResponseError(f"frame declares {length} bytes, got {len(buf) - offset}")
    return decode_status_body(buf[offset : offset + length])


def check_frame_length(length: int) -> None:
    if length <= 0:
        raise MalformedResponseError(f"invalid frame length {length}")
    if length > MAX_FRAME_LENGTH:
        raise MalformedResponseError(f"frame length {length} exceeds {MAX_FRAME_LENGTH}")
