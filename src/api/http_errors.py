"""
Maps poller exceptions to HTTP errors
"""

import logging

from fastapi import HTTPException

from errors import DecryptError, DeviceNotFoundError, PersistenceError, PluginError

logger = logging.getLogger(__name__)

PLUGIN_FAILED = "plugin execution failed"
PERSIST_FAILED = "failed to persist results"


def to_http_exception(error: Exception, context: str) -> HTTPException:
    """
    Plugin and persistence failures are both server errors but keep distinct messages
    so a caller can tell which side failed
    """
    if isinstance(error, HTTPException):
        return error

    if isinstance(error, DeviceNotFoundError):
        return HTTPException(status_code=404, detail=str(error))

    if isinstance(error, PluginError):
        logger.error(f"{context}: {error}")
        return HTTPException(status_code=500, detail=PLUGIN_FAILED)

    if isinstance(error, PersistenceError):
        logger.error(f"{context}: {error}")
        return HTTPException(status_code=500, detail=PERSIST_FAILED)

    if isinstance(error, DecryptError):
        logger.error(f"{context}: {error}")
        return HTTPException(status_code=500, detail="failed to decrypt credential")

    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))

    if isinstance(error, RuntimeError):
        logger.error(f"{context}: {error}")
        return HTTPException(status_code=503, detail=str(error))

    logger.error(f"{context}: {error}")
    return HTTPException(status_code=500, detail=str(error))
