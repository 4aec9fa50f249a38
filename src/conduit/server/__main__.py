"""Entry point for running the server as a module.

Usage:
    python -m conduit.server
    python -m conduit.server --host 0.0.0.0 --port 8080
"""

import argparse
import sys

import uvicorn

from conduit.config import ConduitConfig
from conduit.logconfig import configure_logging
from conduit.server.app import create_app
from conduit.server.config import ServerSettings
from conduit.workflow.engine import WorkflowEngine


def main() -> int:
    """Run the conduit API server."""
    parser = argparse.ArgumentParser(description="Conduit - pipeline run control API")
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: 127.0.0.1, or CONDUIT_HOST env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: 8400, or CONDUIT_PORT env var)",
    )
    args = parser.parse_args()

    settings = ServerSettings()

    # CLI args override env vars
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port

    config = ConduitConfig.load(settings.config_path) if settings.config_path else ConduitConfig.default()
    configure_logging(config.logging.level, config.logging.format)

    app = create_app(WorkflowEngine.from_config(config), settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=config.logging.level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
