"""
Entry point for the service scaffold.

Loads and validates configuration, builds the root logger and the HTTP
server, and shuts down gracefully on SIGINT / SIGTERM.
"""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from .config import ConfigError, load_config, validate_config
from .constants import DEFAULT_CONFIG_PATH
from .observability.logging import get_default_logger
from .web_server import ServiceServer, build_service_logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Microservice scaffold HTTP server")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config file")
    parser.add_argument("--host", help="Host address (overrides config)")
    parser.add_argument("--port", type=int, help="Port number (overrides config)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point - starts the HTTP server and blocks until shutdown."""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        get_default_logger().error("Failed to load configuration", error=str(exc))
        return 1

    # Validate configuration at startup
    config_errors = validate_config(config)
    if config_errors:
        for err in config_errors:
            print(f"  Config error: {err}", file=sys.stderr)
        return 1

    logger = build_service_logger(config)
    logger.info(
        "Service starting",
        version=config["service"]["version"],
        environment=config["service"]["environment"],
    )

    server = ServiceServer(config, logger)

    def shutdown(signum, frame):
        logger.info("Shutdown signal received", signal=signal.Signals(signum).name)
        # serve_forever runs on this thread; stop it from another one
        threading.Thread(target=server.shutdown, name="signal-shutdown", daemon=True).start()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        server.run(host=args.host, port=args.port)
    except OSError as exc:
        logger.error("HTTP server failed", error=str(exc))
        return 1

    logger.info("Service stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
