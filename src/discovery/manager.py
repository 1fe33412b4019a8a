"""
Discovery pipeline: ping -> port -> SSH reachability -> status persistence
"""

import logging
import time
from dataclasses import replace
from typing import Dict, List

from database import queries
from database.models import (
    CredentialProfile,
    DeviceDescriptor,
    ReachabilityResult,
    materialize_devices,
)
from errors import DeviceNotFoundError, PersistenceError
from plugin.executor import REACHABILITY
from services.gateway import (
    DiscoverAll,
    DiscoveryMessage,
    FetchDeviceDetailsAndRunDiscovery,
    StartDiscovery,
)

logger = logging.getLogger(__name__)


class DiscoveryOrchestrator:
    """Runs the three-stage reachability pipeline for one device or every discovery profile"""

    def __init__(self, gateway, probe, cipher, default_port: int = 22):
        self.gateway = gateway
        self.probe = probe
        self.cipher = cipher
        self.default_port = default_port

    # ================== ENTRY POINTS ==================

    async def discover_one(self, device: DeviceDescriptor) -> List[ReachabilityResult]:
        """
        Run discovery for a single device and persist its status
        Raises ValueError when the device address does not resolve; nothing is persisted then
        """
        address = await self.probe.resolve(device.ip)
        if address != device.ip:
            logger.info(f"Device {device.id}: {device.ip} resolved to {address}")
            device = replace(device, ip=address)

        logger.info(f"Starting discovery for device {device.id} ({device.ip}:{device.port})")
        results = {device.id: ReachabilityResult(device.id)}
        await self._run_pipeline([device], results)
        return await self._persist(results)

    async def discover_all(self) -> List[ReachabilityResult]:
        """
        Run discovery for every configured discovery profile
        Every loaded device gets a definitive status row, including the ones
        lost at any stage or whose credential could not be decrypted
        """
        start_time = time.time()

        response = await self.gateway.execute_query(queries.ALL_DISCOVERY_DEVICES)
        if not response.success:
            raise PersistenceError(f"Failed to load discovery profiles: {response.error}")

        rows = response.rows or []
        if not rows:
            logger.info("No discovery profiles configured")
            return []

        devices, failed_ids = materialize_devices(rows, self.cipher, self.default_port)

        # Seed a default unreachable result for each loaded device
        results = {int(row['id']): ReachabilityResult(int(row['id'])) for row in rows}

        if failed_ids:
            logger.warning(f"Skipping {len(failed_ids)} devices with unreadable credentials: {failed_ids}")

        await self._run_pipeline(devices, results)
        persisted = await self._persist(results)

        reachable = sum(1 for r in persisted if r.reachable)
        logger.info(f"Discovery complete: {reachable}/{len(persisted)} devices reachable in {time.time() - start_time:.1f}s")
        return persisted

    async def fetch_device_details_and_run(self, discovery_id: int, ip: str, port: int,
                                           credential_profile_id: int) -> List[ReachabilityResult]:
        """Discovery for a freshly created profile: load its credential, then run discover_one"""
        response = await self.gateway.execute_query(queries.CREDENTIAL_BY_ID, [credential_profile_id])
        if not response.success:
            raise PersistenceError(f"Failed to load credential profile {credential_profile_id}: {response.error}")
        if not response.rows:
            raise DeviceNotFoundError(f"Credential profile {credential_profile_id} not found")

        credential = CredentialProfile.from_row(response.rows[0])
        logger.debug(f"Using credential profile {credential.id} ({credential.name}) for discovery {discovery_id}")
        device = credential.device_for(discovery_id, ip, port, self.cipher, self.default_port)

        return await self.discover_one(device)

    async def rerun(self, discovery_id: int) -> List[ReachabilityResult]:
        """Explicit re-run of an existing discovery profile"""
        device = await self.load_discovery_device(discovery_id)
        return await self.discover_one(device)

    async def load_discovery_device(self, discovery_id: int) -> DeviceDescriptor:
        response = await self.gateway.execute_query(queries.DISCOVERY_DEVICE_BY_ID, [discovery_id])
        if not response.success:
            raise PersistenceError(f"Failed to load discovery profile {discovery_id}: {response.error}")
        if not response.rows:
            raise DeviceNotFoundError(f"Discovery profile {discovery_id} not found")
        return DeviceDescriptor.from_row(response.rows[0], self.cipher, self.default_port)

    async def handle_message(self, message: DiscoveryMessage) -> List[Dict]:
        """Gateway handler; replies with the serialised result array"""
        if isinstance(message, StartDiscovery):
            results = await self.discover_one(message.device)
        elif isinstance(message, FetchDeviceDetailsAndRunDiscovery):
            results = await self.fetch_device_details_and_run(
                message.discovery_id, message.ip, message.port, message.credential_profile_id
            )
        elif isinstance(message, DiscoverAll):
            results = await self.discover_all()
        else:
            raise ValueError(f"Unsupported discovery message: {message!r}")

        return [r.to_dict() for r in results]

    # ================== PIPELINE ==================

    async def _run_pipeline(self, devices: List[DeviceDescriptor], results: Dict[int, ReachabilityResult]):
        """
        Sequential stages; an empty stage leaves every result in the batch unreachable.
        PluginError propagates to the caller.
        """
        if not devices:
            logger.info("No devices to probe")
            return

        pinged = await self.probe.filter_by_ping(devices)
        if not pinged:
            logger.info(f"No devices answered ping - marking all {len(results)} devices inactive")
            return

        ported = await self.probe.filter_by_port(pinged)
        if not ported:
            logger.info(f"No devices passed the port check - marking all {len(results)} devices inactive")
            return

        ssh_results = await self.gateway.run_plugin_command(ported, REACHABILITY)

        ssh_map = {}
        for item in ssh_results:
            try:
                device_id = int(item['id'])
            except (KeyError, TypeError, ValueError):
                logger.error(f"Ignoring malformed reachability result: {item!r}")
                continue

            # Only a JSON true counts; "false", 1 and the like leave the device inactive
            reachable = item.get('reachable')
            if not isinstance(reachable, bool):
                logger.warning(f"Non-boolean reachability for device {device_id}: {reachable!r}")
            ssh_map[device_id] = reachable is True

        for device in ported:
            if device.id in results:
                results[device.id].reachable = ssh_map.get(device.id, False)

    async def _persist(self, results: Dict[int, ReachabilityResult]) -> List[ReachabilityResult]:
        """Batch status update (active/inactive) for every result"""
        ordered = list(results.values())
        if not ordered:
            return ordered

        response = await self.gateway.execute_batch(
            queries.UPDATE_DISCOVERY_STATUS,
            [[r.status, r.device_id] for r in ordered]
        )
        if not response.success:
            logger.error(f"Failed to persist discovery status: {response.error}")
            raise PersistenceError(f"Failed to persist discovery status: {response.error}")

        logger.info(f"Discovery status updated for {len(ordered)} devices")
        return ordered
