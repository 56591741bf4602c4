"""
Unit tests for podalarm.transport.tcp_client.TCPNDJSONClient.

These tests validate transport behavior without performing real network I/O:
- connect() uses socket.socket with correct settings
- lines() yields complete lines from streamed chunks
- lines() handles empty payload (server close) as ConnectionError
- messages() decodes valid readings and skips malformed lines

Approach
--------
We use a lightweight fake socket and monkeypatch socket.socket to return it.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, cast

import pytest

from podalarm.domain.models import TelemetryReading
from podalarm.transport.tcp_client import TCPNDJSONClient


@dataclass
class FakeSocket:
    """
    Simple fake socket for deterministic recv behavior.

    Parameters
    ----------
    recv_chunks
        Byte chunks returned on successive recv() calls. When exhausted,
        recv() returns b"" to simulate server close.
    """

    recv_chunks: List[bytes]
    connected_to: Optional[Tuple[str, int]] = None
    timeout_history: List[Any] = field(default_factory=list)

    def settimeout(self, value) -> None:
        self.timeout_history.append(value)

    def connect(self, addr: Tuple[str, int]) -> None:
        self.connected_to = addr

    def recv(self, n: int) -> bytes:
        if self.recv_chunks:
            return self.recv_chunks.pop(0)
        return b""

    def close(self) -> None:
        return None


def test_connect_uses_timeout_then_streaming_mode(monkeypatch) -> None:
    """
    connect() should set the connect timeout, connect, then clear the timeout
    for streaming mode.
    """
    fake = FakeSocket(recv_chunks=[])
    monkeypatch.setattr("socket.socket", lambda *args, **kwargs: fake)

    client = TCPNDJSONClient(host="10.0.0.1", port=1234, timeout_s=2.5)
    client.connect()

    assert fake.connected_to == ("10.0.0.1", 1234)
    assert fake.timeout_history == [2.5, None]

    client.close()
    assert client._sock is None


def test_lines_yields_complete_lines_from_chunks() -> None:
    chunks = [
        b'{"a":1}\n{"b":',
        b'2}\n\n   \n{"c":3}\n',
    ]
    client = TCPNDJSONClient()
    client._sock = cast(socket.socket, FakeSocket(recv_chunks=chunks))

    it = client.lines()
    assert next(it) == '{"a":1}'
    assert next(it) == '{"b":2}'
    assert next(it) == '{"c":3}'

    with pytest.raises(ConnectionError):
        next(it)


def test_lines_raises_runtime_error_if_not_connected() -> None:
    with pytest.raises(RuntimeError):
        next(TCPNDJSONClient().lines())


def test_messages_decodes_valid_and_skips_invalid(monkeypatch) -> None:
    """
    messages() should yield readings and skip lines that fail decoding
    (bad JSON, missing pod id, unknown record type).
    """
    client = TCPNDJSONClient()

    def fake_lines():
        yield '{"type":"pod_reading","pod_id":"pod-1","timestamp":"2026-01-01T00:00:00Z","temperature_c":24.1}'
        yield "NOT JSON"
        yield '{"type":"pod_reading","timestamp":"2026-01-01T00:00:05Z"}'
        yield '{"type":"heartbeat","pod_id":"pod-1","timestamp":"2026-01-01T00:00:05Z"}'
        yield '{"type":"pod_reading","pod_id":"pod-2","timestamp":"2026-01-01T00:00:10Z","co2_ppm":"950"}'

    monkeypatch.setattr(client, "lines", fake_lines)

    msgs = list(client.messages())

    assert [m.pod_id for m in msgs] == ["pod-1", "pod-2"]
    assert all(isinstance(m, TelemetryReading) for m in msgs)
    assert msgs[0].temperature_c == 24.1
    assert msgs[1].co2_ppm == 950.0


def test_lines_drops_connection_on_oversized_line() -> None:
    client = TCPNDJSONClient(max_line_bytes=16)
    client._sock = cast(socket.socket, FakeSocket(recv_chunks=[b'{"a":1}\n' + b"x" * 40]))

    it = client.lines()
    assert next(it) == '{"a":1}'
    with pytest.raises(ConnectionError):
        next(it)
