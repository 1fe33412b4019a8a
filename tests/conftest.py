"""Pytest configuration and shared fixtures."""

from typing import Any, Dict, List, Optional, Set

import pytest

from database.models import DeviceDescriptor, QueryResult
from payload_cipher import PayloadCipher

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def cipher() -> PayloadCipher:
    """Cipher with a fresh random 128-bit key."""
    return PayloadCipher(PayloadCipher.generate_secret())


def device_row(cipher: PayloadCipher, device_id: int, ip: str, port: int = 22,
               username: str = "admin", password: str = "secret") -> Dict[str, Any]:
    """Row shaped like the device+credential join, password encrypted at rest."""
    return {
        "id": device_id,
        "ip": ip,
        "port": port,
        "username": username,
        "password": cipher.encrypt(password),
    }


def make_device(device_id: int, ip: str, port: int = 22) -> DeviceDescriptor:
    return DeviceDescriptor(id=device_id, ip=ip, port=port, username="admin", password="secret")


class FakeGateway:
    """Records every persistence and plugin call; responses are scripted per query."""

    def __init__(self):
        self.query_results: Dict[str, QueryResult] = {}
        self.batch_results: Dict[str, QueryResult] = {}
        self.plugin_results: List[Dict[str, Any]] = []
        self.plugin_error: Optional[Exception] = None

        self.queries: List[tuple] = []
        self.batches: List[tuple] = []
        self.plugin_calls: List[tuple] = []

    async def execute_query(self, query, params=None):
        self.queries.append((query, list(params) if params else None))
        return self.query_results.get(query, QueryResult(success=True))

    async def execute_batch(self, query, param_sets):
        self.batches.append((query, [list(p) for p in param_sets]))
        if not param_sets:
            return QueryResult.failure("No parameters provided")
        return self.batch_results.get(query, QueryResult(success=True, row_count=len(param_sets)))

    async def run_plugin_command(self, devices, command):
        self.plugin_calls.append((list(devices), command))
        if self.plugin_error is not None:
            raise self.plugin_error
        return list(self.plugin_results)

    def batch_for(self, query) -> Optional[List[list]]:
        for sql, params in self.batches:
            if sql == query:
                return params
        return None


class FakeProbe:
    """Ping/port filters driven by id sets; records what each stage received."""

    def __init__(self, ping_ok: Optional[Set[int]] = None, port_ok: Optional[Set[int]] = None,
                 hosts: Optional[Dict[str, str]] = None):
        self.ping_ok = ping_ok or set()
        self.port_ok = port_ok or set()
        self.hosts = hosts or {}
        self.ping_calls: List[List[DeviceDescriptor]] = []
        self.port_calls: List[List[DeviceDescriptor]] = []
        self.resolved: List[str] = []

    async def resolve(self, host):
        """Names in `hosts` map to their address, other names fail; dotted addresses pass through."""
        self.resolved.append(host)
        if host in self.hosts:
            return self.hosts[host]
        if host.replace(".", "").isdigit():
            return host
        raise ValueError(f"Unable to resolve host: {host}")

    async def filter_by_ping(self, devices):
        self.ping_calls.append(list(devices))
        return [d for d in devices if d.id in self.ping_ok]

    async def filter_by_port(self, devices):
        self.port_calls.append(list(devices))
        return [d for d in devices if d.id in self.port_ok]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
