"""
Poller Server - Main orchestrator for discovery, polling and the HTTP API
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

import uvicorn

# Local imports
from config_loader import get_encryption_secret, load_config, setup_logging
from database.manager import DatabaseManager
from discovery.connectivity import ConnectivityProbe
from discovery.manager import DiscoveryOrchestrator
from payload_cipher import PayloadCipher
from plugin.executor import PluginExecutor
from api.main_api import PollerAPI
from services.gateway import ServiceGateway
from services.scheduler import PollingScheduler

logger = logging.getLogger(__name__)


class PollerServer:
    """Builds every service once, wires them together and serves the API"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config)

        secret = get_encryption_secret(self.config)
        if not secret:
            raise ValueError("ENCRYPTION_SECRET is not set (environment, .env or security.encryption_secret)")
        self.cipher = PayloadCipher(secret)

        probe_config = self.config['probe']
        default_port = probe_config['port'].get('default_port', 22)

        # Probe subprocesses run on their own pool, separate from the plugin pool
        self.probe_executor = ThreadPoolExecutor(
            max_workers=probe_config.get('max_workers', 32),
            thread_name_prefix='probe'
        )

        self.db = DatabaseManager(self.config)
        self.plugin = PluginExecutor(self.config['plugin'], self.cipher)
        self.gateway = ServiceGateway(self.db, self.plugin)
        self.probe = ConnectivityProbe(probe_config, self.probe_executor)

        self.discovery = DiscoveryOrchestrator(self.gateway, self.probe, self.cipher, default_port)
        self.gateway.register_discovery_handler(self.discovery.handle_message)

        self.scheduler = PollingScheduler(self.gateway, self.probe, self.cipher, default_port)

        self.api = PollerAPI(self.gateway, self.discovery, self.scheduler, self.config)

        self.running = False

    async def start(self):
        """Start all services and block serving the HTTP API"""
        logger.info("Starting network device poller...")

        try:
            await self.startup()
            await self._start_api_server()
        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def startup(self):
        """Initialise the database and background services without serving HTTP"""
        await self.db.initialize()
        logger.info("Database initialized successfully")

        await self.gateway.start()
        self.running = True

        polling_config = self.config['polling']
        if polling_config.get('auto_start', True):
            outcome = self.scheduler.start(polling_config['interval_seconds'])
            logger.info(f"Polling auto-start: {outcome.message}")
        else:
            logger.info("Polling auto-start disabled - waiting for /api/polling/start")

    async def stop(self):
        """Stop all server services gracefully"""
        logger.info("Stopping server...")
        self.running = False

        # Stop services in order: timer, message dispatch, worker pools, database
        await self.scheduler.shutdown()
        await self.gateway.stop()

        self.plugin.shutdown()
        self.probe_executor.shutdown(wait=False, cancel_futures=True)

        await self.db.close()
        logger.info("Server stopped")

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        logger.info(f"API documentation: http://localhost:{self.config['api']['port']}/docs")

        await server.serve()
