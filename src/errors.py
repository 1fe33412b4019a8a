"""
Error types shared by discovery, polling and the plugin protocol
"""

from typing import Optional


class PollerError(Exception):
    """Base class for all poller errors"""


class ProbeError(PollerError):
    """A single device probe failed (ping/port). Never escapes the probe batch."""


class DecryptError(PollerError):
    """A cipher line or stored credential could not be decrypted/parsed"""


class PluginError(PollerError):
    """Plugin invocation failed as a whole (spawn, write, timeout or non-zero exit)"""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class PersistenceError(PollerError):
    """Query or batch against the persistence layer failed"""


class DeviceNotFoundError(PollerError):
    """Requested discovery profile, credential or provisioned device does not exist"""
