"""
Tests for the plugin subprocess protocol.

A small fake plugin is generated per test so the real spawn, stdin/stdout
exchange, timeout and kill paths are exercised.
"""

import json
import os
import stat
import sys
import time

import pytest

from errors import PluginError
from plugin.executor import METRICS, REACHABILITY, TIMEOUT_EXIT_CODE, PluginExecutor

from conftest import make_device


def write_plugin(tmp_path, body: str) -> str:
    path = tmp_path / "fake-plugin"
    path.write_text(f"#!{sys.executable}\nimport sys, time\n{body}\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def make_executor(cipher):
    created = []

    def _make(plugin_path, timeout_seconds=10):
        executor = PluginExecutor({"path": plugin_path, "timeout_seconds": timeout_seconds, "max_workers": 2}, cipher)
        created.append(executor)
        return executor

    yield _make

    for executor in created:
        executor.shutdown()


class TestPluginProtocol:
    """Encrypted request line in, one encrypted result per output line."""

    @pytest.mark.asyncio
    async def test_round_trip_through_real_process(self, tmp_path, cipher, make_executor):
        capture = tmp_path / "capture.txt"
        lines = [
            cipher.encrypt(json.dumps({"id": 1, "reachable": True})),
            cipher.encrypt(json.dumps({"id": 2, "reachable": False})),
        ]
        plugin = write_plugin(tmp_path, (
            f"data = sys.stdin.readline()\n"
            f"open({str(capture)!r}, 'w').write(sys.argv[1] + '\\n' + data)\n"
            f"for line in {lines!r}:\n"
            f"    print(line)\n"
        ))

        devices = [make_device(1, "10.0.0.1"), make_device(2, "10.0.0.2", port=2222)]
        results = await make_executor(plugin).run(devices, REACHABILITY)

        assert results == [{"id": 1, "reachable": True}, {"id": 2, "reachable": False}]

        command, request_line = capture.read_text().split("\n", 1)
        assert command == "reachability"
        assert json.loads(cipher.decrypt(request_line)) == [d.to_plugin_payload() for d in devices]

    @pytest.mark.asyncio
    async def test_bad_and_blank_lines_are_dropped(self, tmp_path, cipher, make_executor):
        good = cipher.encrypt(json.dumps({"id": 7, "cpu": 12.5}))
        not_object = cipher.encrypt(json.dumps([1, 2, 3]))
        plugin = write_plugin(tmp_path, (
            "sys.stdin.readline()\n"
            "print('@@ not a cipher line @@')\n"
            "print('')\n"
            f"print({not_object!r})\n"
            f"print({good!r})\n"
        ))

        results = await make_executor(plugin).run([make_device(7, "10.0.0.7")], METRICS)

        assert results == [{"id": 7, "cpu": 12.5}]

    @pytest.mark.asyncio
    async def test_non_utf8_line_is_dropped_and_rest_kept(self, tmp_path, cipher, make_executor):
        good = cipher.encrypt(json.dumps({"id": 7, "cpu": 3.0}))
        plugin = write_plugin(tmp_path, (
            "sys.stdin.readline()\n"
            "sys.stdout.buffer.write(b'\\xff\\xfe garbage\\n')\n"
            f"sys.stdout.buffer.write({good!r}.encode('ascii') + b'\\n')\n"
            "sys.stdout.flush()\n"
        ))

        results = await make_executor(plugin).run([make_device(7, "10.0.0.7")], METRICS)

        assert results == [{"id": 7, "cpu": 3.0}]

    @pytest.mark.asyncio
    async def test_empty_device_list_skips_spawn(self, tmp_path, make_executor):
        executor = make_executor(str(tmp_path / "does-not-exist"))
        assert await executor.run([], METRICS) == []

    @pytest.mark.asyncio
    async def test_unknown_command_rejected(self, tmp_path, make_executor):
        executor = make_executor(str(tmp_path / "does-not-exist"))
        with pytest.raises(ValueError):
            await executor.run([make_device(1, "10.0.0.1")], "reboot")


class TestPluginFailures:
    """Whole-call failures surface as PluginError."""

    @pytest.mark.asyncio
    async def test_non_zero_exit_reports_stderr(self, tmp_path, make_executor):
        plugin = write_plugin(tmp_path, (
            "sys.stdin.readline()\n"
            "sys.stderr.write('ssh: authentication failed\\n')\n"
            "sys.exit(1)\n"
        ))

        with pytest.raises(PluginError) as exc_info:
            await make_executor(plugin).run([make_device(1, "10.0.0.1")], REACHABILITY)

        assert exc_info.value.exit_code == 1
        assert "ssh: authentication failed" in str(exc_info.value)
        assert str(exc_info.value).startswith("Plugin error (exit code 1)")

    @pytest.mark.asyncio
    async def test_non_utf8_stderr_still_reports_plugin_error(self, tmp_path, make_executor):
        plugin = write_plugin(tmp_path, (
            "sys.stdin.readline()\n"
            "sys.stderr.buffer.write(b'ssh: \\xe9chec\\n')\n"
            "sys.stderr.flush()\n"
            "sys.exit(1)\n"
        ))

        with pytest.raises(PluginError) as exc_info:
            await make_executor(plugin).run([make_device(1, "10.0.0.1")], REACHABILITY)

        assert exc_info.value.exit_code == 1
        assert "ssh: " in exc_info.value.stderr
        assert "chec" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path, make_executor):
        pid_file = tmp_path / "pid"
        plugin = write_plugin(tmp_path, (
            "import os\n"
            f"open({str(pid_file)!r}, 'w').write(str(os.getpid()))\n"
            "time.sleep(30)\n"
        ))

        started = time.monotonic()
        with pytest.raises(PluginError) as exc_info:
            await make_executor(plugin, timeout_seconds=1).run([make_device(1, "10.0.0.1")], METRICS)

        assert time.monotonic() - started < 15
        assert exc_info.value.exit_code == TIMEOUT_EXIT_CODE

        pid = int(pid_file.read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path, make_executor):
        executor = make_executor(str(tmp_path / "does-not-exist"))

        with pytest.raises(PluginError, match="Failed to start plugin"):
            await executor.run([make_device(1, "10.0.0.1")], METRICS)
