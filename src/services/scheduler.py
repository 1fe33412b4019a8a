"""
Periodic polling of provisioned devices: ping -> port -> SSH metrics
Records availability for every device and metrics for the ones that answered
"""

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from database import queries
from database.models import (
    AvailabilityRecord,
    DeviceDescriptor,
    MetricsResult,
    materialize_devices,
)
from errors import DeviceNotFoundError, PersistenceError, PluginError
from plugin.executor import METRICS

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Polling already running"
NOT_RUNNING = "No polling to stop"


@dataclass(frozen=True)
class SchedulerOutcome:
    """Result of start/stop; conflicts are reported here rather than raised"""
    ok: bool
    message: str
    conflict: bool = False


class SchedulerState:
    """
    Holds the single active timer handle
    try_start/try_stop are compare-and-set transitions, safe from any thread
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handle: Optional[asyncio.Task] = None

    @property
    def handle(self) -> Optional[asyncio.Task]:
        return self._handle

    @property
    def running(self) -> bool:
        return self._handle is not None

    def try_start(self, handle: asyncio.Task) -> bool:
        with self._lock:
            if self._handle is not None:
                return False
            self._handle = handle
            return True

    def try_stop(self) -> Optional[asyncio.Task]:
        """Clear and return the current handle, or None when idle"""
        with self._lock:
            handle, self._handle = self._handle, None
            return handle


class PollingScheduler:
    """Single-flight periodic polling; each tick is an independent cycle"""

    def __init__(self, gateway, probe, cipher, default_port: int = 22):
        self.gateway = gateway
        self.probe = probe
        self.cipher = cipher
        self.default_port = default_port
        self.state = SchedulerState()
        self.interval_seconds: Optional[float] = None
        self._cycles: Set[asyncio.Task] = set()
        self._cycle_count = 0

    @property
    def is_running(self) -> bool:
        return self.state.running

    # ================== START / STOP ==================

    def start(self, interval_seconds: float) -> SchedulerOutcome:
        if interval_seconds is None or interval_seconds <= 0:
            raise ValueError("Polling interval must be positive")

        # Pre-check so a second start does not spawn a timer only to cancel it
        if self.state.running:
            logger.warning("Polling already running. Ignoring new start request.")
            return SchedulerOutcome(False, ALREADY_RUNNING, conflict=True)

        timer = asyncio.get_running_loop().create_task(self._timer_loop(interval_seconds))
        if not self.state.try_start(timer):
            timer.cancel()
            logger.warning("Polling already running. Ignoring new start request.")
            return SchedulerOutcome(False, ALREADY_RUNNING, conflict=True)

        self.interval_seconds = interval_seconds
        logger.info(f"Polling scheduled every {interval_seconds}s")
        return SchedulerOutcome(True, "Polling scheduled")

    def stop(self) -> SchedulerOutcome:
        timer = self.state.try_stop()
        if timer is None:
            logger.info("No polling timer to stop")
            return SchedulerOutcome(False, NOT_RUNNING, conflict=True)

        timer.cancel()
        self.interval_seconds = None
        logger.info("Polling stopped")
        return SchedulerOutcome(True, "Polling stopped")

    async def shutdown(self):
        """Stop the timer and wait for cycles already in flight"""
        timer = self.state.try_stop()
        if timer is not None:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    async def _timer_loop(self, interval: float):
        """Fire a cycle every interval on a fixed cadence, never waiting for the previous one"""
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + interval

        while True:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            next_fire += interval

            cycle = asyncio.create_task(self._run_cycle_safely())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)

            if len(self._cycles) > 1:
                logger.warning(f"{len(self._cycles)} polling cycles in flight - interval {interval}s may be too short")

    async def _run_cycle_safely(self):
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Polling cycle failed: {e}")

    # ================== CYCLE ==================

    async def run_cycle(self) -> Dict[str, int]:
        """
        One polling cycle across all provisioned, non-deleted devices
        Returns counts of devices loaded, available, and metrics rows written
        """
        cycle_start = time.time()
        self._cycle_count += 1
        cycle_no = self._cycle_count
        summary = {'devices': 0, 'available': 0, 'metrics': 0}

        response = await self.gateway.execute_query(queries.PROVISIONED_DEVICES_FOR_POLLING)
        if not response.success:
            raise PersistenceError(f"Failed to load provisioned devices: {response.error}")

        rows = response.rows or []
        if not rows:
            logger.info("No provisioned devices to poll")
            return summary

        devices, failed_ids = materialize_devices(rows, self.cipher, self.default_port)
        loaded_ids = [int(row['id']) for row in rows]
        summary['devices'] = len(loaded_ids)
        if failed_ids:
            logger.warning(f"Polling without {len(failed_ids)} devices with unreadable credentials: {failed_ids}")

        reachable = await self._filter_reachable(devices)
        reachable_ids = {d.id for d in reachable}
        summary['available'] = len(reachable_ids)

        await self._record_availability([
            AvailabilityRecord(device_id, device_id in reachable_ids) for device_id in loaded_ids
        ])

        if not reachable:
            logger.info("No devices passed PING and PORT checks.")
        else:
            try:
                plugin_results = await self.gateway.run_plugin_command(reachable, METRICS)
            except PluginError as e:
                logger.error(f"SSH metrics collection failed: {e}")
            else:
                summary['metrics'] = await self._record_metrics(plugin_results, reachable_ids)

        logger.info(
            f"Polling cycle #{cycle_no}: {summary['available']}/{summary['devices']} available, "
            f"{summary['metrics']} metrics rows in {time.time() - cycle_start:.1f}s"
        )
        return summary

    async def _filter_reachable(self, devices: List[DeviceDescriptor]) -> List[DeviceDescriptor]:
        if not devices:
            return []
        pinged = await self.probe.filter_by_ping(devices)
        if not pinged:
            return []
        return await self.probe.filter_by_port(pinged)

    async def _record_availability(self, records: List[AvailabilityRecord]):
        response = await self.gateway.execute_batch(
            queries.INSERT_AVAILABILITY,
            [[r.device_id, r.was_available, r.checked_at] for r in records]
        )
        if not response.success:
            raise PersistenceError(f"Availability insert failed: {response.error}")
        logger.info(f"Availability records inserted: {len(records)}")

    async def _record_metrics(self, plugin_results: List[Dict[str, Any]], polled_ids: Set[int]) -> int:
        metrics_rows = []
        for item in plugin_results:
            result = self._to_metrics_result(item, polled_ids)
            if result is not None:
                metrics_rows.append(result)

        if not metrics_rows:
            logger.info("No metrics results to process.")
            return 0

        response = await self.gateway.execute_batch(
            queries.INSERT_POLLING_RESULT,
            [[m.device_id, json.dumps(m.metrics), m.polled_at] for m in metrics_rows]
        )
        if not response.success:
            raise PersistenceError(f"Polling result insert failed: {response.error}")

        logger.info(f"Successfully inserted {len(metrics_rows)} polling results.")
        return len(metrics_rows)

    @staticmethod
    def _to_metrics_result(item: Dict[str, Any], polled_ids: Set[int]) -> Optional[MetricsResult]:
        """A usable response has a known id, no error and at least one metric"""
        try:
            device_id = int(item['id'])
        except (KeyError, TypeError, ValueError):
            logger.error(f"Skipping metrics result without a valid id: {list(item)}")
            return None

        if device_id not in polled_ids:
            logger.warning(f"Skipping metrics for device {device_id} which was not polled")
            return None

        if item.get('error'):
            logger.warning(f"Device {device_id} returned an error: {item['error']}")
            return None

        metrics = {k: v for k, v in item.items() if k != 'id'}
        if not metrics:
            logger.warning(f"Device {device_id} returned no metrics")
            return None

        return MetricsResult(device_id, metrics, datetime.now(timezone.utc))

    # ================== MEMBERSHIP ==================

    async def add_entry(self, device_id: int):
        """Bring a provisioned device back into scope from the next tick"""
        await self._set_deleted(device_id, False)
        logger.info(f"Added device ID {device_id} to polling")

    async def remove_entry(self, device_id: int):
        """Take a provisioned device out of scope from the next tick (soft delete)"""
        await self._set_deleted(device_id, True)
        logger.info(f"Removed device ID {device_id} from polling")

    async def _set_deleted(self, device_id: int, deleted: bool):
        response = await self.gateway.execute_query(queries.SET_PROVISION_DELETED, [deleted, device_id])
        if not response.success:
            raise PersistenceError(f"Failed to update provisioned device {device_id}: {response.error}")
        if response.row_count == 0:
            raise DeviceNotFoundError(f"Provisioned device {device_id} not found")

    async def availability(self, device_id: int) -> float:
        response = await self.gateway.execute_query(queries.AVAILABILITY_PERCENT, [device_id])
        if not response.success:
            raise PersistenceError(f"Failed to read availability for {device_id}: {response.error}")
        if not response.rows or response.rows[0].get('availability_percent') is None:
            return 0.0
        return round(float(response.rows[0]['availability_percent']), 2)
