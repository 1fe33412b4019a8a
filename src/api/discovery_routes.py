"""
Discovery API routes
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body
from pydantic import BaseModel

from services.gateway import DiscoverAll, StartDiscovery, parse_discovery_message
from .http_errors import to_http_exception

logger = logging.getLogger(__name__)


class ReachabilityItem(BaseModel):
    id: int
    reachable: bool


class DiscoveryResponse(BaseModel):
    results: List[ReachabilityItem]


def create_discovery_routes(gateway, discovery, request_timeout: Optional[float] = None):
    """Create discovery routes; every run goes through the gateway's request/reply channel"""
    router = APIRouter(prefix="/api/discovery", tags=["discovery"])

    @router.post("/run", response_model=DiscoveryResponse)
    async def run_all_discovery():
        """Run discovery across every discovery profile"""
        try:
            results = await gateway.request(DiscoverAll(), timeout=request_timeout)
            return DiscoveryResponse(results=results)
        except Exception as e:
            raise to_http_exception(e, "Discovery of all profiles failed")

    @router.post("/actions", response_model=DiscoveryResponse)
    async def run_discovery_action(envelope: Dict[str, Any] = Body(...)):
        """Accept a JSON action envelope (startDiscovery, fetchDeviceDetailsAndRunDiscovery, discoverAll)"""
        try:
            message = parse_discovery_message(envelope)
        except (TypeError, ValueError) as e:
            raise to_http_exception(ValueError(f"Invalid discovery message: {e}"), "Discovery action")

        logger.info(f"Discovery action received: {message.action}")
        try:
            results = await gateway.request(message, timeout=request_timeout)
            return DiscoveryResponse(results=results)
        except Exception as e:
            raise to_http_exception(e, f"Discovery action '{message.action}' failed")

    @router.post("/{discovery_id}/run", response_model=DiscoveryResponse)
    async def rerun_discovery(discovery_id: int):
        """Re-run discovery for one existing profile"""
        try:
            device = await discovery.load_discovery_device(discovery_id)
            results = await gateway.request(StartDiscovery(device=device), timeout=request_timeout)
            return DiscoveryResponse(results=results)
        except Exception as e:
            raise to_http_exception(e, f"Discovery for profile {discovery_id} failed")

    return router
