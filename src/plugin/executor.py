"""
External SSH plugin execution
One subprocess per logical command, exchanging encrypted JSON lines over stdio
"""

import asyncio
import json
import logging
import subprocess
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Union

from database.models import DeviceDescriptor
from errors import DecryptError, PluginError
from payload_cipher import PayloadCipher

logger = logging.getLogger(__name__)

REACHABILITY = "reachability"
METRICS = "metrics"
COMMANDS = (REACHABILITY, METRICS)

# Exit code reported when the plugin outlives its timeout
TIMEOUT_EXIT_CODE = -1

# Upper bound for collecting stderr after a forced kill
DRAIN_TIMEOUT_SECONDS = 5

DeviceLike = Union[DeviceDescriptor, Dict[str, Any]]


class PluginExecutor:
    """Runs the plugin executable off the event loop on a bounded thread pool"""

    def __init__(self, config: Dict, cipher: PayloadCipher, executor: Optional[Executor] = None):
        self.plugin_path = config['path']
        self.timeout = config.get('timeout_seconds', 60)
        self.cipher = cipher
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=config.get('max_workers', 4),
            thread_name_prefix='plugin'
        )

    async def run(self, devices: Sequence[DeviceLike], command: str) -> List[Dict[str, Any]]:
        """
        Send the device batch to the plugin and collect one result object per output line
        Raises PluginError when the call as a whole fails
        """
        if command not in COMMANDS:
            raise ValueError(f"Unknown plugin command: {command}")

        if not devices:
            return []

        payload = [d.to_plugin_payload() if isinstance(d, DeviceDescriptor) else dict(d) for d in devices]

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self._execute, payload, command)

    def _execute(self, payload: List[Dict[str, Any]], command: str) -> List[Dict[str, Any]]:
        encrypted_input = self.cipher.encrypt(json.dumps(payload))
        process = None

        try:
            try:
                process = subprocess.Popen(
                    [self.plugin_path, command],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE
                )
            except OSError as e:
                logger.error(f"Plugin spawn failed ({self.plugin_path}): {e}")
                raise PluginError(f"Failed to start plugin: {e}") from e

            logger.debug(f"Plugin started: pid={process.pid} command={command} devices={len(payload)}")

            try:
                stdout, stderr = process.communicate(input=(encrypted_input + "\n").encode("ascii"), timeout=self.timeout)
                exit_code = process.returncode
            except subprocess.TimeoutExpired:
                logger.error(f"Plugin timed out after {self.timeout}s (pid={process.pid}, command={command})")
                process.kill()
                stdout, stderr = self._drain(process)
                exit_code = TIMEOUT_EXIT_CODE
            except OSError as e:
                logger.error(f"Failed to write plugin input: {e}")
                raise PluginError(f"Failed to write plugin input: {e}") from e

            if exit_code != 0:
                stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()
                message = f"Plugin error (exit code {exit_code}): {stderr_text}"
                logger.error(message)
                raise PluginError(message, exit_code=exit_code, stderr=stderr_text)

            results = self._parse_output(stdout or b"")
            logger.info(f"Plugin '{command}' returned {len(results)} results for {len(payload)} devices")
            return results

        finally:
            if process is not None and process.poll() is None:
                process.kill()
                process.wait()

    @staticmethod
    def _drain(process: subprocess.Popen):
        try:
            return process.communicate(timeout=DRAIN_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"Could not drain output of killed plugin pid={process.pid}")
            return b"", b""

    def _parse_output(self, stdout: bytes) -> List[Dict[str, Any]]:
        """Decode and decrypt each line independently; bad lines are logged and dropped"""
        results = []
        for line_no, raw in enumerate(stdout.splitlines(), start=1):
            if not raw.strip():
                continue
            try:
                item = json.loads(self.cipher.decrypt(raw.decode("utf-8")))
            except (UnicodeDecodeError, DecryptError, json.JSONDecodeError) as e:
                logger.error(f"Dropping plugin output line {line_no}: {e}")
                continue

            if not isinstance(item, dict):
                logger.error(f"Dropping plugin output line {line_no}: expected an object, got {type(item).__name__}")
                continue

            results.append(item)
        return results

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)
