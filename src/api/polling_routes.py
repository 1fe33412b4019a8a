"""
Polling control API routes
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from .http_errors import to_http_exception

logger = logging.getLogger(__name__)


# Request models
class PollingStartRequest(BaseModel):
    interval_seconds: Optional[float] = None


class PollingStatusResponse(BaseModel):
    running: bool
    interval_seconds: Optional[float] = None
    message: Optional[str] = None


class AvailabilityResponse(BaseModel):
    id: int
    availability_percent: float


def create_polling_routes(scheduler, config):
    """Create polling start/stop, status and membership routes"""
    router = APIRouter(prefix="/api/polling", tags=["polling"])
    default_interval = config.get('polling', {}).get('interval_seconds', 60)

    @router.post("/start", response_model=PollingStatusResponse)
    async def start_polling(request: Optional[PollingStartRequest] = None):
        interval = request.interval_seconds if request and request.interval_seconds is not None else default_interval
        try:
            outcome = scheduler.start(interval)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not outcome.ok:
            raise HTTPException(status_code=400, detail=outcome.message)

        return PollingStatusResponse(running=True, interval_seconds=interval, message=outcome.message)

    @router.post("/stop", response_model=PollingStatusResponse)
    async def stop_polling():
        outcome = scheduler.stop()
        if not outcome.ok:
            raise HTTPException(status_code=400, detail=outcome.message)
        return PollingStatusResponse(running=False, message=outcome.message)

    @router.get("/status", response_model=PollingStatusResponse)
    async def polling_status():
        return PollingStatusResponse(
            running=scheduler.is_running,
            interval_seconds=scheduler.interval_seconds
        )

    @router.post("/devices/{device_id}")
    async def add_polling_device(device_id: int):
        """Bring a provisioned device back into the polling set"""
        try:
            await scheduler.add_entry(device_id)
            return {"id": device_id, "polling": True}
        except Exception as e:
            raise to_http_exception(e, f"Adding device {device_id} to polling failed")

    @router.delete("/devices/{device_id}")
    async def remove_polling_device(device_id: int):
        """Remove a provisioned device from the polling set"""
        try:
            await scheduler.remove_entry(device_id)
            return {"id": device_id, "polling": False}
        except Exception as e:
            raise to_http_exception(e, f"Removing device {device_id} from polling failed")

    @router.get("/devices/{device_id}/availability", response_model=AvailabilityResponse)
    async def device_availability(device_id: int):
        try:
            percent = await scheduler.availability(device_id)
            return AvailabilityResponse(id=device_id, availability_percent=percent)
        except Exception as e:
            raise to_http_exception(e, f"Reading availability for device {device_id} failed")

    return router
