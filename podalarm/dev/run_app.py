from __future__ import annotations

import argparse
import logging
import threading

from podalarm.bootstrap import build_app_system

logger = logging.getLogger(__name__)


def main() -> None:
    """
    Start the monitoring runtime threads and the HTTP API.

    Notes
    -----
    - Loads configuration from `config.yaml` by default.
    - Optional CLI usage:
        python -m podalarm.dev.run_app --config path/to/config.yaml
    - With the API disabled the process runs until interrupted.
    """
    parser = argparse.ArgumentParser(description="Grow pod alarm service")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args()

    wiring = build_app_system(config_path=args.config)
    wiring.runtime.start()

    api_cfg = wiring.config.api
    try:
        if api_cfg.enabled:
            logger.info("[API] listening on %s:%d", api_cfg.host, api_cfg.port)
            wiring.api.run(host=api_cfg.host, port=api_cfg.port, debug=False, use_reloader=False)
        else:
            threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        wiring.runtime.stop()


if __name__ == "__main__":
    main()
