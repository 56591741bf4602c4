from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from podalarm.domain.models import TelemetryReading
from podalarm.transport.tcp_client import TCPNDJSONClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingsReceiverConfig:
    """
    Configuration for the readings receiver thread.

    Parameters
    ----------
    host
        Ingestion feed host.
    port
        Ingestion feed port.
    reconnect_delay_s
        Delay in seconds between reconnect attempts after a failure.
    connect_timeout_s
        TCP connect timeout (seconds) used during the connect phase.
    """

    host: str
    port: int
    reconnect_delay_s: float = 0.5
    connect_timeout_s: float = 5.0


class ReadingsReceiverThread:
    """
    Dedicated I/O thread that receives decoded readings from a TCP NDJSON feed.

    Responsibilities
    ----------------
    - Own and manage the TCP connection lifecycle.
    - Auto-reconnect on failures until stopped.
    - Hand each decoded reading to ``sink`` (the pod worker pool).

    Stop Behavior
    -------------
    :meth:`stop` sets the stop event and closes the socket to break a blocking
    receive.

    Attributes
    ----------
    received
        Decoded readings handed to the sink.
    rejected
        Readings the sink refused (full worker queue).
    """

    def __init__(
        self,
        cfg: ReadingsReceiverConfig,
        sink: Callable[[TelemetryReading], bool],
        stop_event: threading.Event,
    ):
        self._cfg = cfg
        self._sink = sink
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name="readings-receiver", daemon=True)
        self._client: Optional[TCPNDJSONClient] = None
        self.received = 0
        self.rejected = 0

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        client = self._client
        if client is not None:
            client.close()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def _connect(self) -> TCPNDJSONClient:
        client = TCPNDJSONClient(host=self._cfg.host, port=self._cfg.port, timeout_s=self._cfg.connect_timeout_s)
        client.connect()
        self._client = client
        return client

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                client = self._connect()
                for reading in client.messages():
                    if self._stop.is_set():
                        break
                    self.received += 1
                    if self._sink(reading) is False:
                        self.rejected += 1
            except OSError as e:
                if self._stop.is_set():
                    break
                logger.warning("[INGEST] feed %s:%d lost (%s); reconnecting in %.1fs",
                               self._cfg.host, self._cfg.port, e, self._cfg.reconnect_delay_s)
                self._stop.wait(self._cfg.reconnect_delay_s)
            finally:
                client, self._client = self._client, None
                if client is not None:
                    client.close()

        logger.info("[INGEST] receiver stopped (%d received, %d rejected)", self.received, self.rejected)
