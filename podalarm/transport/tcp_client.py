from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Iterator, Optional

from podalarm.domain.models import TelemetryReading
from podalarm.transport.ndjson import decode_message

logger = logging.getLogger(__name__)


@dataclass
class TCPNDJSONClient:
    """
    TCP client that receives NDJSON pod readings from an ingestion feed.

    Yields raw NDJSON lines via :meth:`lines` and decoded readings via
    :meth:`messages`. Malformed lines are logged and skipped.

    Parameters
    ----------
    host
        Remote host of the feed (e.g. the pod simulator).
    port
        Remote TCP port.
    timeout_s
        Connection timeout (seconds) used for initial connect only.
    max_line_bytes
        Longest accepted line. A feed that exceeds it without a newline is
        treated as broken and the connection is dropped.
    """

    host: str = "127.0.0.1"
    port: int = 9009
    timeout_s: float = 5.0
    max_line_bytes: int = 64 * 1024

    _sock: Optional[socket.socket] = None

    def connect(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(self.timeout_s)
        sock.connect((self.host, self.port))
        sock.settimeout(None)  # streaming mode
        self._sock = sock
        logger.info("[INGEST] connected to %s:%d", self.host, self.port)

    def lines(self) -> Iterator[str]:
        """
        Yield complete NDJSON lines from the socket stream.

        Raises
        ------
        RuntimeError
            If called before :meth:`connect`.
        ConnectionError
            If the remote side closes the connection or a line exceeds
            ``max_line_bytes``.
        """
        if not self._sock:
            raise RuntimeError("Not connected")

        pending = bytearray()
        while True:
            chunk = self._sock.recv(4096)
            if not chunk:
                raise ConnectionError("Server closed connection")
            pending.extend(chunk)

            *complete, rest = pending.split(b"\n")
            pending = bytearray(rest)
            for raw in complete:
                text = raw.decode("utf-8", errors="replace").strip()
                if text:
                    yield text

            if len(pending) > self.max_line_bytes:
                raise ConnectionError(f"line exceeds {self.max_line_bytes} bytes")

    def messages(self) -> Iterator[TelemetryReading]:
        """Yield decoded readings; lines that fail to decode are logged and skipped."""
        for line in self.lines():
            try:
                reading = decode_message(line)
            except (KeyError, ValueError) as e:
                logger.warning("[INGEST] skipped line %r: %s", line[:200], e)
                continue
            yield reading

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.debug("[INGEST] close failed: %s", e)
