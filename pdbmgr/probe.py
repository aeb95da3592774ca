from __future__ import annotations

import socket
import time

from .errors import MalformedResponseError, ProbeConnectionError, TruncatedResponseError
from .protocol import (
    DEFAULT_PROTOCOL_VERSION,
    VARINT_MAX_BYTES,
    ServerStatus,
    check_frame_length,
    decode_status_body,
    handshake_packet,
    status_request_packet,
)


def _recv(sock: socket.socket, n: int, deadline: float) -> bytes:
    """recv bounded by the deadline of the whole exchange, not per call."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise socket.timeout("probe deadline passed")
    sock.settimeout(remaining)
    return sock.recv(n)


def _recv_exact(sock: socket.socket, n: int, deadline: float) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = _recv(sock, n - len(buf), deadline)
        except socket.timeout as e:
            raise TruncatedResponseError(f"timed out after {len(buf)} of {n} bytes") from e
        except OSError as e:
            raise TruncatedResponseError(f"read failed after {len(buf)} of {n} bytes: {e}") from e
        if not chunk:
            raise TruncatedResponseError(f"connection closed after {len(buf)} of {n} bytes")
        buf.extend(chunk)
    return bytes(buf)


def _read_frame_length(sock: socket.socket, deadline: float) -> int:
    """Read the VarInt frame length one byte at a time."""
    result = 0
    for i in range(VARINT_MAX_BYTES):
        try:
            chunk = _recv(sock, 1, deadline)
        except socket.timeout as e:
            if i == 0:
                raise ProbeConnectionError("timed out waiting for status response") from e
            raise TruncatedResponseError("timed out inside frame length") from e
        except OSError as e:
            if i == 0:
                raise ProbeConnectionError(f"read failed: {e}") from e
            raise TruncatedResponseError(f"read failed inside frame length: {e}") from e
        if not chunk:
            raise TruncatedResponseError("connection closed before frame length was read")
        byte = chunk[0]
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            if result & 0x80000000:
                result -= 1 << 32
            return result
    raise MalformedResponseError(f"frame length VarInt longer than {VARINT_MAX_BYTES} bytes")


def probe(
    host: str,
    port: int,
    timeout: float,
    protocol_version: int = DEFAULT_PROTOCOL_VERSION,
) -> ServerStatus:
    """Query a server's player counts with the status exchange.

    Raises ProbeConnectionError when the server cannot be reached,
    MalformedResponseError / TruncatedResponseError when it answers badly.
    `timeout` bounds the whole exchange, connect included. Never retries.
    """
    start = time.monotonic()
    deadline = start + timeout
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except socket.gaierror as e:
        raise ProbeConnectionError(f"cannot resolve {host}: {e}") from e
    except socket.timeout as e:
        raise ProbeConnectionError(f"timed out connecting to {host}:{port}") from e
    except OSError as e:
        raise ProbeConnectionError(f"cannot connect to {host}:{port}: {e}") from e

    with sock:
        try:
            sock.settimeout(max(deadline - time.monotonic(), 0.001))
            sock.sendall(handshake_packet(host, port, protocol_version) + status_request_packet())
        except OSError as e:
            raise ProbeConnectionError(f"send to {host}:{port} failed: {e}") from e

        length = _read_frame_length(sock, deadline)
        check_frame_length(length)
        body = _recv_exact(sock, length, deadline)

    latency_ms = round((time.monotonic() - start) * 1000.0, 2)
    return decode_status_body(body, latency_ms=latency_ms)
