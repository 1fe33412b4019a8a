"""
System health and monitoring API routes
"""

from fastapi import APIRouter
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


def create_system_routes(gateway, scheduler):
    """Create system monitoring routes"""
    router = APIRouter(prefix="/api", tags=["system"])

    @router.get("/system/health")
    async def system_health():
        """System health check"""
        try:
            response = await gateway.execute_query("SELECT 1")
            database = "connected" if response.success else "error"

            return {
                "status": "healthy" if response.success and gateway.running else "degraded",
                "database": database,
                "database_error": response.error,
                "gateway": "running" if gateway.running else "stopped",
                "polling": {
                    "running": scheduler.is_running,
                    "interval_seconds": scheduler.interval_seconds
                },
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    return router
