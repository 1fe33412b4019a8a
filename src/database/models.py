"""
Database models and data structures
"""

import ipaddress
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone

from errors import DecryptError

logger = logging.getLogger(__name__)

ACTIVE = "active"
INACTIVE = "inactive"


def _convert_ip_address(ip_addr) -> str:
    """Convert IPv4Address or other IP types to string for JSON serialization"""
    if isinstance(ip_addr, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return str(ip_addr)
    return str(ip_addr) if ip_addr else "0.0.0.0"


@dataclass
class DeviceDescriptor:
    """Device handed through the pipeline; password is decrypted and memory-only"""
    id: int
    ip: str
    port: int
    username: str
    password: str = field(repr=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any], cipher, default_port: int = 22) -> 'DeviceDescriptor':
        """Build from a device+credential row; raises DecryptError on a bad stored password"""
        return cls(
            id=int(row['id']),
            ip=_convert_ip_address(row['ip']),
            port=int(row.get('port') or default_port),
            username=row['username'],
            password=cipher.decrypt(row['password'])
        )

    def to_plugin_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ip": self.ip,
            "port": self.port,
            "username": self.username,
            "password": self.password,
        }


@dataclass
class CredentialProfile:
    """Persisted credential profile (password stays encrypted)"""
    id: int
    name: str
    username: str
    encrypted_password: str = field(repr=False)
    system_type: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'CredentialProfile':
        return cls(
            id=int(row['id']),
            name=row.get('name') or "",
            username=row['username'],
            encrypted_password=row['password'],
            system_type=row.get('system_type')
        )

    def device_for(self, device_id: int, ip: str, port: Optional[int], cipher,
                   default_port: int = 22) -> DeviceDescriptor:
        """Pair this credential with a target; raises DecryptError on a bad stored password"""
        return DeviceDescriptor(
            id=int(device_id),
            ip=ip,
            port=int(port or default_port),
            username=self.username,
            password=cipher.decrypt(self.encrypted_password)
        )


@dataclass
class ReachabilityResult:
    device_id: int
    reachable: bool = False

    @property
    def status(self) -> str:
        return ACTIVE if self.reachable else INACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.device_id, "reachable": self.reachable}


@dataclass
class MetricsResult:
    """One polling_result row; appended, never updated"""
    device_id: int
    metrics: Dict[str, Any]
    polled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AvailabilityRecord:
    device_id: int
    was_available: bool
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class QueryResult:
    """Query/batch envelope shared by every persistence call"""
    success: bool
    row_count: int = 0
    rows: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> 'QueryResult':
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        response: Dict[str, Any] = {"success": True, "rowCount": self.row_count}
        if self.rows:
            response["rows"] = self.rows
        return response


def availability_percent(records: Iterable[AvailabilityRecord]) -> float:
    """Share of checks where the device was available, 0-100 rounded to 2 places"""
    records = list(records)
    if not records:
        return 0.0
    available = sum(1 for r in records if r.was_available)
    return round(available / len(records) * 100, 2)


def materialize_devices(rows: Iterable[Dict[str, Any]], cipher,
                        default_port: int = 22) -> Tuple[List[DeviceDescriptor], List[int]]:
    """
    Decrypt credentials for each device row
    Returns (devices, ids whose credential could not be decrypted)
    """
    devices = []
    failed_ids = []
    for row in rows:
        try:
            devices.append(DeviceDescriptor.from_row(row, cipher, default_port))
        except DecryptError as e:
            logger.error(f"Failed to decrypt credential for device {row.get('id')}: {e}")
            failed_ids.append(int(row['id']))
    return devices, failed_ids
