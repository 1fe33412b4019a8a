"""
ASGI entry point: uvicorn asgi:app
Services are built at import time and started/stopped with the app
"""

import logging
import os
from pathlib import Path

from services.poller_server import PollerServer

Path("logs").mkdir(exist_ok=True)

# PollerServer configures logging from the loaded config
server = PollerServer(config_path=os.environ.get('CONFIG_FILE', 'config/config.yaml'))
logger = logging.getLogger(__name__)

app = server.api.app


@app.on_event("startup")
async def start_poller():
    """Open the database pool, start the gateway and auto-start polling"""
    await server.startup()
    logger.info(f"Poller started (polling running: {server.scheduler.is_running})")


@app.on_event("shutdown")
async def stop_poller():
    await server.stop()


logger.info("ASGI app ready for uvicorn")
