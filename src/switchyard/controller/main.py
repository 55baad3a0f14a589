"""Controller entry point.

Usage: switchyard-controller [--host 0.0.0.0] [--port 8000]
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from switchyard.config.bootstrap import load_bootstrap_config

logger = logging.getLogger(__name__)


def main() -> None:
    cfg = load_bootstrap_config()
    parser = argparse.ArgumentParser(description="Switchyard controller")
    parser.add_argument("--host", default=cfg.controller_host, help="Bind address")
    parser.add_argument("--port", type=int, default=cfg.controller_port, help="Bind port")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info("Controller starting on %s:%d", args.host, args.port)

    uvicorn.run(
        "switchyard.controller.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=cfg.log_level.lower(),
        lifespan="on",
    )


if __name__ == "__main__":
    main()
