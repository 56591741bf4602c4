from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from simulator.transport.ndjson import encode_record

logger = logging.getLogger(__name__)


@dataclass
class TCPPublishServer:
    """
    Single-client TCP server that publishes pod reading records as NDJSON.

    Behavior
    --------
    - Binds and listens on (host, port)
    - Accepts one TCP client at a time (the monitoring service)
    - Sends records to the connected client as UTF-8 NDJSON lines
    - If a new client connects, any previous client is closed and replaced

    Concurrency Model
    -----------------
    Access to the client socket is guarded by a lock so accept/send/close can
    be called from different threads.
    """

    host: str = "127.0.0.1"
    port: int = 9009

    _server_sock: Optional[socket.socket] = None
    _client_sock: Optional[socket.socket] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def has_client(self) -> bool:
        with self._lock:
            return self._client_sock is not None

    def start(self) -> None:
        """
        Create, bind, and listen on the server socket.

        Raises
        ------
        OSError
            If binding or listening fails (e.g., port already in use).
        """
        self._server_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server_sock.bind((self.host, self.port))
        self._server_sock.listen(1)
        logger.info("[SIM] TCP server listening on %s:%d", self.host, self.port)

    def accept_one(self) -> None:
        """Accept a single client connection, replacing any previous one."""
        if not self._server_sock:
            raise RuntimeError("Server not started")

        client, addr = self._server_sock.accept()
        with self._lock:
            if self._client_sock:
                self._client_sock.close()
            self._client_sock = client
        logger.info("[SIM] client connected from %s", addr)

    def send(self, record: Dict[str, Any]) -> None:
        """
        Send one record as an NDJSON line to the connected client.

        If no client is connected this does nothing. If the client disconnects
        during send, its socket is closed and cleared.
        """
        data = (encode_record(record) + "\n").encode("utf-8")

        with self._lock:
            sock = self._client_sock

        if not sock:
            return

        try:
            sock.sendall(data)
        except OSError:
            with self._lock:
                sock.close()
                if self._client_sock is sock:
                    self._client_sock = None
            logger.info("[SIM] client disconnected")

    def close(self) -> None:
        """Close client and server sockets. Safe to call multiple times."""
        with self._lock:
            if self._client_sock:
                self._client_sock.close()
                self._client_sock = None
        if self._server_sock:
            self._server_sock.close()
            self._server_sock = None
