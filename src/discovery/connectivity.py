"""
Host resolution plus ICMP and TCP port reachability filters
Each device is probed with an OS command (ping / nc) on a worker thread
"""

import asyncio
import ipaddress
import logging
import socket
import subprocess
from concurrent.futures import Executor
from typing import Callable, Dict, List, Optional

from database.models import DeviceDescriptor
from errors import ProbeError

logger = logging.getLogger(__name__)

# Seconds added to the tool's own timeout before the process is abandoned
PROBE_GRACE_SECONDS = 2


class ConnectivityProbe:
    """Filters device batches by ping and by TCP port reachability"""

    def __init__(self, config: Dict, executor: Optional[Executor] = None):
        self.executor = executor
        self.ping_command = config.get('ping_command', 'ping')
        self.port_command = config.get('port_command', 'nc')

        ping = config.get('ping', {})
        self.ping_count = ping.get('count', 1)
        self.ping_timeout = ping.get('timeout', 1)
        self.ping_interval = ping.get('interval', 0.2)

        port = config.get('port', {})
        self.port_timeout = port.get('timeout', 2)
        self.default_port = port.get('default_port', 22)

        self.grace_seconds = config.get('timeout_margin', PROBE_GRACE_SECONDS)

    async def resolve(self, host: str) -> str:
        """
        Resolve a host name to an IPv4 address on the worker pool
        Literal addresses are returned as-is; raises ValueError when the name does not resolve
        """
        host = (host or "").strip()
        if not host:
            raise ValueError("Unable to resolve host: empty address")

        try:
            return str(ipaddress.ip_address(host))
        except ValueError:
            pass

        loop = asyncio.get_running_loop()
        try:
            address = await loop.run_in_executor(self.executor, socket.gethostbyname, host)
        except (socket.gaierror, socket.herror, UnicodeError) as e:
            logger.warning(f"Host resolution failed for {host}: {e}")
            raise ValueError(f"Unable to resolve host: {host}") from e

        logger.debug(f"Resolved {host} -> {address}")
        return address

    def ping_args(self, device: DeviceDescriptor) -> List[str]:
        return [
            self.ping_command,
            '-c', str(self.ping_count),
            '-W', str(self.ping_timeout),
            '-i', str(self.ping_interval),
            device.ip
        ]

    def port_args(self, device: DeviceDescriptor) -> List[str]:
        return [
            self.port_command, '-zv',
            '-w', str(self.port_timeout),
            device.ip,
            str(device.port or self.default_port)
        ]

    async def filter_by_ping(self, devices: List[DeviceDescriptor]) -> List[DeviceDescriptor]:
        """Devices answering ICMP echo"""
        # ping waits up to timeout per packet plus interval between packets
        budget = self.ping_count * (self.ping_timeout + self.ping_interval) + self.grace_seconds
        reachable = await self._filter(devices, self.ping_args, budget)
        logger.info(f"Ping check: {len(reachable)}/{len(devices)} devices reachable")
        return reachable

    async def filter_by_port(self, devices: List[DeviceDescriptor]) -> List[DeviceDescriptor]:
        """Devices accepting a TCP connection on their configured port"""
        budget = self.port_timeout + self.grace_seconds
        reachable = await self._filter(devices, self.port_args, budget)
        logger.info(f"Port check: {len(reachable)}/{len(devices)} devices reachable")
        return reachable

    async def _filter(self, devices: List[DeviceDescriptor],
                      command_for: Callable[[DeviceDescriptor], List[str]],
                      timeout: float) -> List[DeviceDescriptor]:
        if not devices:
            return []

        loop = asyncio.get_running_loop()

        async def probe(device: DeviceDescriptor) -> bool:
            try:
                return await loop.run_in_executor(
                    self.executor, self._run_probe, command_for(device), timeout
                )
            except ProbeError as e:
                logger.debug(f"Probe failed for device {device.id} ({device.ip}): {e}")
                return False

        results = await asyncio.gather(*(probe(d) for d in devices))
        return [device for device, ok in zip(devices, results) if ok]

    @staticmethod
    def _run_probe(args: List[str], timeout: float) -> bool:
        """Blocking probe; True on exit code 0"""
        try:
            result = subprocess.run(
                args,
                check=False,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"{args[0]} timed out after {timeout}s") from e
        except OSError as e:
            raise ProbeError(f"{args[0]} could not be started: {e}") from e
        return result.returncode == 0
