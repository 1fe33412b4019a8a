"""
Discovery module - connectivity probes and the reachability pipeline
"""

from .connectivity import ConnectivityProbe
from .manager import DiscoveryOrchestrator

__all__ = ['ConnectivityProbe', 'DiscoveryOrchestrator']
