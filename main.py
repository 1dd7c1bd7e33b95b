#!/usr/bin/env python
"""Camera capture service entry point.

Usage:
    python main.py
    python main.py --host 0.0.0.0 --port 3000 --log-level DEBUG
"""
import argparse
import logging
import sys

from capture.settings import get_settings
from web.app import create_app


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the capture service."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Camera capture service - photos, video and live streams from a local camera"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from settings)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: from settings)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    settings = get_settings()

    setup_logging(args.log_level or settings.server.log_level)
    logger = logging.getLogger(__name__)

    host = args.host or settings.server.host
    port = args.port or settings.server.port

    app = create_app()
    logger.info(f"Saving captures to {settings.capture.ensure_save_dir()}")
    logger.info(f"Camera capture service listening at {host}:{port}")

    try:
        app.run(host=host, port=port, threaded=True)
    finally:
        stopped = app.orchestrator.stop_streams()
        if stopped:
            logger.info(f"Stopped {stopped} active stream(s)")


if __name__ == "__main__":
    main()
