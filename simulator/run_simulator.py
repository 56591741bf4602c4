from __future__ import annotations

import argparse
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from simulator.config.settings import PodProfile, SimulatorSettings
from simulator.core.simulator_engine import PodEnvironmentSimulator
from simulator.transport.tcp_server import TCPPublishServer

logger = logging.getLogger(__name__)

# (seconds after streaming starts, pod_id) for scripted HVAC failures
Scenario = List[Tuple[float, str]]


def tcp_publish_loop(
    server: TCPPublishServer,
    engine: PodEnvironmentSimulator,
    stop_flag: threading.Event,
    hvac_failures: Optional[Scenario] = None,
) -> None:
    server.start()

    while not stop_flag.is_set():
        try:
            server.accept_one()
        except OSError:
            break

        logger.info("[SIM] streaming %d pod(s)", len(engine.pod_ids()))
        started = datetime.now(timezone.utc)
        pending = sorted(hvac_failures or [])

        while not stop_flag.is_set():
            now = datetime.now(timezone.utc)
            elapsed = (now - started).total_seconds()
            while pending and pending[0][0] <= elapsed:
                _, pod_id = pending.pop(0)
                engine.set_hvac(pod_id, False)
                logger.info("[SIM] HVAC failure injected on %s", pod_id)

            for record in engine.step(now):
                server.send(record)

            if not server.has_client:
                break

            stop_flag.wait(engine.settings.tick_s)


def _parse_failure(text: str) -> Tuple[float, str]:
    pod_id, _, after = text.partition("@")
    if not pod_id or not after:
        raise argparse.ArgumentTypeError("expected POD_ID@SECONDS")
    return float(after), pod_id


def main() -> None:
    """
    Run the headless pod simulator.

    Optional CLI usage:
        python -m simulator.run_simulator --port 9009 --pod pod-1:vegetative \
            --hvac-failure pod-1@120
    """
    parser = argparse.ArgumentParser(description="Grow pod environment simulator")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=9009)
    parser.add_argument("--interval", type=float, default=10.0, help="Seconds between readings per pod")
    parser.add_argument("--pod", action="append", default=[], help="POD_ID[:STAGE[:DRIFT]]")
    parser.add_argument("--hvac-failure", action="append", default=[], type=_parse_failure,
                        help="POD_ID@SECONDS: turn HVAC off after SECONDS of streaming")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-7s %(name)s %(message)s")

    defaults = SimulatorSettings()
    pods = defaults.pods
    if args.pod:
        profiles = []
        for spec in args.pod:
            parts = spec.split(":")
            profiles.append(PodProfile(
                pod_id=parts[0],
                stage=parts[1] if len(parts) > 1 else "vegetative",
                drift=float(parts[2]) if len(parts) > 2 else 0.0,
            ))
        pods = tuple(profiles)

    settings = SimulatorSettings(host=args.host, port=args.port, sample_interval_s=args.interval, pods=pods)
    engine = PodEnvironmentSimulator(settings)
    server = TCPPublishServer(host=settings.host, port=settings.port)

    stop_flag = threading.Event()
    t = threading.Thread(
        target=tcp_publish_loop, args=(server, engine, stop_flag, args.hvac_failure), daemon=True
    )
    t.start()

    try:
        while t.is_alive():
            t.join(timeout=0.5)
    except KeyboardInterrupt:
        pass
    finally:
        stop_flag.set()
        server.close()


if __name__ == "__main__":
    main()
