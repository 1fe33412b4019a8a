"""
Tests for the service gateway: message parsing, request/reply and delegation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from database.models import QueryResult
from services.gateway import (
    DiscoverAll,
    FetchDeviceDetailsAndRunDiscovery,
    ServiceGateway,
    StartDiscovery,
    parse_discovery_message,
)


class TestParseDiscoveryMessage:
    """JSON envelopes to typed messages."""

    def test_start_discovery(self):
        message = parse_discovery_message({
            "action": "startDiscovery",
            "device": {"id": 1, "ip": "10.0.0.5", "port": 22, "username": "admin", "password": "pw"},
        })

        assert isinstance(message, StartDiscovery)
        assert message.device.id == 1
        assert message.device.ip == "10.0.0.5"

    def test_start_discovery_default_port(self):
        message = parse_discovery_message({
            "action": "startDiscovery",
            "device": {"id": 1, "ip": "10.0.0.5", "username": "admin", "password": "pw"},
        })
        assert message.device.port == 22

    def test_fetch_details(self):
        message = parse_discovery_message({
            "action": "fetchDeviceDetailsAndRunDiscovery",
            "discoveryId": 7, "ip": "10.0.0.7", "port": 830, "credentialProfileId": 3,
        })

        assert message == FetchDeviceDetailsAndRunDiscovery(7, "10.0.0.7", 830, 3)

    def test_fetch_details_accepts_id(self):
        message = parse_discovery_message({
            "action": "fetchDeviceDetailsAndRunDiscovery",
            "id": 7, "ip": "10.0.0.7", "credentialProfileId": 3,
        })
        assert message.discovery_id == 7

    def test_discover_all(self):
        assert parse_discovery_message({"action": "discoverAll"}) == DiscoverAll()

    @pytest.mark.parametrize("envelope", [
        {"action": "rebootEverything"},
        {},
        {"action": "startDiscovery"},
        {"action": "startDiscovery", "device": {"id": 1, "ip": "10.0.0.5"}},
        {"action": "fetchDeviceDetailsAndRunDiscovery", "discoveryId": 1, "ip": "10.0.0.1"},
        ["discoverAll"],
    ])
    def test_invalid_envelopes(self, envelope):
        with pytest.raises(ValueError):
            parse_discovery_message(envelope)


class TestRequestReply:
    """Queued discovery requests resolve with the handler's reply."""

    @pytest.mark.asyncio
    async def test_request_returns_handler_reply(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())
        handler = AsyncMock(return_value=[{"id": 1, "reachable": False}])
        gateway.register_discovery_handler(handler)
        await gateway.start()

        try:
            reply = await gateway.request(DiscoverAll(), timeout=5)
        finally:
            await gateway.stop()

        assert reply == [{"id": 1, "reachable": False}]
        handler.assert_awaited_once_with(DiscoverAll())

    @pytest.mark.asyncio
    async def test_handler_error_reaches_caller(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())
        gateway.register_discovery_handler(AsyncMock(side_effect=RuntimeError("pipeline broke")))
        await gateway.start()

        try:
            with pytest.raises(RuntimeError, match="pipeline broke"):
                await gateway.request(DiscoverAll(), timeout=5)
        finally:
            await gateway.stop()

    @pytest.mark.asyncio
    async def test_slow_request_does_not_block_others(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())
        release = asyncio.Event()

        async def handler(message):
            if isinstance(message, DiscoverAll):
                await release.wait()
                return "all"
            return "one"

        gateway.register_discovery_handler(handler)
        await gateway.start()

        try:
            slow = asyncio.create_task(gateway.request(DiscoverAll()))
            fast = await gateway.request(FetchDeviceDetailsAndRunDiscovery(1, "10.0.0.1", 22, 1), timeout=5)
            release.set()

            assert fast == "one"
            assert await asyncio.wait_for(slow, 5) == "all"
        finally:
            await gateway.stop()

    @pytest.mark.asyncio
    async def test_request_before_start(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())

        with pytest.raises(RuntimeError, match="not running"):
            await gateway.request(DiscoverAll())

    @pytest.mark.asyncio
    async def test_no_handler_registered(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())
        await gateway.start()

        try:
            with pytest.raises(RuntimeError, match="No discovery handler"):
                await gateway.request(DiscoverAll(), timeout=5)
        finally:
            await gateway.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        gateway = ServiceGateway(MagicMock(), MagicMock())
        await gateway.start()
        assert gateway.running

        await gateway.stop()
        await gateway.stop()
        assert not gateway.running


class TestDelegation:
    """Persistence and plugin calls pass straight through."""

    @pytest.mark.asyncio
    async def test_execute_query(self):
        db = MagicMock()
        db.execute_query = AsyncMock(return_value=QueryResult(success=True, row_count=1))
        gateway = ServiceGateway(db, MagicMock())

        result = await gateway.execute_query("SELECT 1", (5,))

        assert result.success
        db.execute_query.assert_awaited_once_with("SELECT 1", [5])

    @pytest.mark.asyncio
    async def test_execute_batch(self):
        db = MagicMock()
        db.execute_batch = AsyncMock(return_value=QueryResult(success=True, row_count=2))
        gateway = ServiceGateway(db, MagicMock())

        result = await gateway.execute_batch("UPDATE t SET a = $1", [[1], [2]])

        assert result.row_count == 2

    @pytest.mark.asyncio
    async def test_run_plugin_command(self):
        plugin = MagicMock()
        plugin.run = AsyncMock(return_value=[{"id": 1}])
        gateway = ServiceGateway(MagicMock(), plugin)

        assert await gateway.run_plugin_command([], "metrics") == [{"id": 1}]
        plugin.run.assert_awaited_once_with([], "metrics")
