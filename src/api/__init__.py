"""
API module for discovery, polling control and monitoring
"""

from .main_api import PollerAPI
from .discovery_routes import create_discovery_routes
from .polling_routes import create_polling_routes
from .system_routes import create_system_routes

__all__ = ['PollerAPI', 'create_discovery_routes', 'create_polling_routes', 'create_system_routes']
