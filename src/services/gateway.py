"""
Service gateway - the only path from discovery/polling to persistence and the plugin
Also carries discovery action messages between the HTTP layer and the orchestrator
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Sequence, Set, Union

from database.models import DeviceDescriptor, QueryResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartDiscovery:
    """Run the pipeline for one fully materialised device"""
    action: ClassVar[str] = "startDiscovery"
    device: DeviceDescriptor


@dataclass(frozen=True)
class FetchDeviceDetailsAndRunDiscovery:
    """Load credentials for a freshly created discovery profile, then run the pipeline"""
    action: ClassVar[str] = "fetchDeviceDetailsAndRunDiscovery"
    discovery_id: int
    ip: str
    port: int
    credential_profile_id: int


@dataclass(frozen=True)
class DiscoverAll:
    """Run the pipeline for every discovery profile"""
    action: ClassVar[str] = "discoverAll"


DiscoveryMessage = Union[StartDiscovery, FetchDeviceDetailsAndRunDiscovery, DiscoverAll]
DiscoveryHandler = Callable[[DiscoveryMessage], Awaitable[Any]]


def _require(envelope: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if envelope.get(key) is not None:
            return envelope[key]
    raise ValueError(f"Missing required field: {keys[0]}")


def parse_discovery_message(envelope: Dict[str, Any]) -> DiscoveryMessage:
    """Convert a JSON action envelope into its typed message"""
    if not isinstance(envelope, dict):
        raise ValueError("Discovery message must be a JSON object")

    action = envelope.get("action")

    if action == StartDiscovery.action:
        device = _require(envelope, "device")
        if not isinstance(device, dict):
            raise ValueError("device must be an object")
        return StartDiscovery(device=DeviceDescriptor(
            id=int(_require(device, "id")),
            ip=str(_require(device, "ip")),
            port=int(device.get("port") or 22),
            username=str(_require(device, "username")),
            password=str(_require(device, "password"))
        ))

    if action == FetchDeviceDetailsAndRunDiscovery.action:
        return FetchDeviceDetailsAndRunDiscovery(
            discovery_id=int(_require(envelope, "discoveryId", "id")),
            ip=str(_require(envelope, "ip")),
            port=int(envelope.get("port") or 22),
            credential_profile_id=int(_require(envelope, "credentialProfileId"))
        )

    if action == DiscoverAll.action:
        return DiscoverAll()

    raise ValueError(f"Unknown action: {action}")


@dataclass
class _Envelope:
    message: DiscoveryMessage
    reply: asyncio.Future = field(repr=False)


class ServiceGateway:
    """Query/batch contract, plugin wrapper and discovery request/reply channel"""

    def __init__(self, database_manager, plugin_executor):
        self.db = database_manager
        self.plugin = plugin_executor

        self._handler: Optional[DiscoveryHandler] = None
        self._queue: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ================== PERSISTENCE ==================

    async def execute_query(self, query: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return await self.db.execute_query(query, list(params) if params else None)

    async def execute_batch(self, query: str, param_sets: List[Sequence[Any]]) -> QueryResult:
        return await self.db.execute_batch(query, param_sets)

    # ================== PLUGIN ==================

    async def run_plugin_command(self, devices: Sequence[DeviceDescriptor], command: str) -> List[Dict[str, Any]]:
        return await self.plugin.run(devices, command)

    # ================== DISCOVERY MESSAGES ==================

    def register_discovery_handler(self, handler: DiscoveryHandler):
        self._handler = handler

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    async def start(self):
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        logger.info("Service gateway dispatcher started")

    async def stop(self):
        if self._dispatcher is None:
            return

        self._dispatcher.cancel()
        await asyncio.gather(self._dispatcher, return_exceptions=True)
        self._dispatcher = None

        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        # Fail anything still queued so callers are not left waiting
        while self._queue is not None and not self._queue.empty():
            envelope = self._queue.get_nowait()
            if not envelope.reply.done():
                envelope.reply.set_exception(RuntimeError("Service gateway stopped"))

        logger.info("Service gateway dispatcher stopped")

    async def request(self, message: DiscoveryMessage, timeout: Optional[float] = None) -> Any:
        """Send a discovery message and wait for the handler's reply"""
        if not self.running:
            raise RuntimeError("Service gateway is not running")

        reply = asyncio.get_running_loop().create_future()
        await self._queue.put(_Envelope(message, reply))
        logger.debug(f"Queued discovery action '{message.action}'")

        if timeout is None:
            return await reply
        return await asyncio.wait_for(reply, timeout)

    async def _dispatch_loop(self):
        while True:
            envelope = await self._queue.get()
            # Each message runs on its own task so a long discovery does not hold up the queue
            task = asyncio.create_task(self._handle(envelope))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _handle(self, envelope: _Envelope):
        if envelope.reply.cancelled():
            return
        try:
            if self._handler is None:
                raise RuntimeError("No discovery handler registered")
            result = await self._handler(envelope.message)
        except asyncio.CancelledError:
            if not envelope.reply.done():
                envelope.reply.cancel()
            raise
        except Exception as e:
            logger.error(f"Discovery action '{envelope.message.action}' failed: {e}")
            if not envelope.reply.done():
                envelope.reply.set_exception(e)
        else:
            if not envelope.reply.done():
                envelope.reply.set_result(result)
