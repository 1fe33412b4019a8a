"""
Database module for credential, discovery and polling data
"""

from .manager import DatabaseManager
from .models import (
    ACTIVE,
    INACTIVE,
    AvailabilityRecord,
    CredentialProfile,
    DeviceDescriptor,
    MetricsResult,
    QueryResult,
    ReachabilityResult,
    availability_percent,
    materialize_devices,
)

__all__ = [
    'DatabaseManager', 'DeviceDescriptor', 'CredentialProfile', 'ReachabilityResult',
    'MetricsResult', 'AvailabilityRecord', 'QueryResult', 'availability_percent', 'materialize_devices',
    'ACTIVE', 'INACTIVE'
]
