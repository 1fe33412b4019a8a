"""
Local HTTP API for the network device poller
Discovery runs, polling control and device availability
"""

from fastapi import FastAPI
from typing import Dict
import logging

# Import modular route factories
from .discovery_routes import create_discovery_routes
from .polling_routes import create_polling_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)


class PollerAPI:
    """Local HTTP API for discovery and polling"""

    def __init__(self, gateway, discovery, scheduler, config: Dict):
        self.gateway = gateway
        self.discovery = discovery
        self.scheduler = scheduler
        self.config = config
        self.app = FastAPI(
            title="Network Device Poller",
            description="Discovery, availability and SSH metrics polling for network devices",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        request_timeout = self.config.get('api', {}).get('request_timeout_seconds')

        discovery_router = create_discovery_routes(self.gateway, self.discovery, request_timeout)
        polling_router = create_polling_routes(self.scheduler, self.config)
        system_router = create_system_routes(self.gateway, self.scheduler)

        self.app.include_router(discovery_router)
        self.app.include_router(polling_router)
        self.app.include_router(system_router)

        logger.debug(f"API routes registered: {len(self.app.routes)}")
