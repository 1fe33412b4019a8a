"""
Network Device Poller - command line entry point

Usage: python main.py [config.yaml]
The config path falls back to $CONFIG_FILE, then config/config.yaml
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from services.poller_server import PollerServer

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'


def resolve_config_path(argv) -> str:
    if len(argv) > 1:
        return argv[1]
    return os.environ.get('CONFIG_FILE', DEFAULT_CONFIG_PATH)


async def run(config_path: str) -> int:
    """Run the poller until the API server exits or SIGINT/SIGTERM arrives"""
    try:
        server = PollerServer(config_path=config_path)
    except Exception as e:
        logger.error(f"Could not build poller from {config_path}: {e}")
        return 1

    logger.info(f"Using configuration file: {config_path}")
    serve_task = asyncio.create_task(server.start())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, serve_task.cancel)

    exit_code = 0
    try:
        await serve_task
    except asyncio.CancelledError:
        logger.info("Shutdown requested")
    except Exception as e:
        logger.error(f"Poller failed: {e}")
        exit_code = 1
    finally:
        await server.stop()

    return exit_code


if __name__ == "__main__":
    Path("logs").mkdir(exist_ok=True)
    sys.exit(asyncio.run(run(resolve_config_path(sys.argv))))
