"""
Tests for database models and helpers.
"""

import pytest

from database.models import (
    AvailabilityRecord,
    CredentialProfile,
    DeviceDescriptor,
    QueryResult,
    ReachabilityResult,
    availability_percent,
    materialize_devices,
)
from errors import DecryptError

from conftest import device_row


class TestAvailabilityPercent:

    def test_two_of_three(self):
        records = [AvailabilityRecord(1, True), AvailabilityRecord(1, True), AvailabilityRecord(1, False)]
        assert availability_percent(records) == 66.67

    def test_no_records(self):
        assert availability_percent([]) == 0.0

    def test_always_available(self):
        assert availability_percent([AvailabilityRecord(1, True)] * 4) == 100.0


class TestQueryResult:

    def test_success_envelope(self):
        result = QueryResult(success=True, row_count=1, rows=[{"id": 1}])
        assert result.to_dict() == {"success": True, "rowCount": 1, "rows": [{"id": 1}]}

    def test_success_without_rows(self):
        assert QueryResult(success=True, row_count=3).to_dict() == {"success": True, "rowCount": 3}

    def test_failure_envelope(self):
        assert QueryResult.failure("boom").to_dict() == {"success": False, "error": "boom"}


class TestReachabilityResult:

    def test_defaults_to_inactive(self):
        result = ReachabilityResult(3)
        assert result.reachable is False
        assert result.status == "inactive"
        assert result.to_dict() == {"id": 3, "reachable": False}

    def test_active(self):
        assert ReachabilityResult(3, True).status == "active"


class TestDeviceDescriptor:

    def test_from_row_decrypts_password(self, cipher):
        device = DeviceDescriptor.from_row(device_row(cipher, 1, "10.0.0.5", password="pw"), cipher)

        assert device.password == "pw"
        assert device.to_plugin_payload() == {
            "id": 1, "ip": "10.0.0.5", "port": 22, "username": "admin", "password": "pw"
        }

    def test_missing_port_uses_default(self, cipher):
        row = device_row(cipher, 1, "10.0.0.5")
        row["port"] = None
        assert DeviceDescriptor.from_row(row, cipher, default_port=2022).port == 2022

    def test_password_not_in_repr(self, cipher):
        device = DeviceDescriptor.from_row(device_row(cipher, 1, "10.0.0.5", password="topsecret"), cipher)
        assert "topsecret" not in repr(device)

    def test_materialize_collects_failures(self, cipher):
        bad = device_row(cipher, 2, "10.0.0.2")
        bad["password"] = "@@@@"

        devices, failed = materialize_devices([device_row(cipher, 1, "10.0.0.1"), bad], cipher)

        assert [d.id for d in devices] == [1]
        assert failed == [2]


class TestCredentialProfile:

    def test_from_row_keeps_password_encrypted(self, cipher):
        stored = cipher.encrypt("pw")
        profile = CredentialProfile.from_row(
            {"id": 3, "name": "lab", "username": "netops", "password": stored, "system_type": "linux"}
        )

        assert profile.encrypted_password == stored
        assert profile.system_type == "linux"
        assert stored not in repr(profile)

    def test_device_for_decrypts_and_defaults_port(self, cipher):
        profile = CredentialProfile.from_row({"id": 3, "username": "netops", "password": cipher.encrypt("pw")})

        device = profile.device_for(11, "10.1.1.1", None, cipher, default_port=2022)

        assert device.to_plugin_payload() == {
            "id": 11, "ip": "10.1.1.1", "port": 2022, "username": "netops", "password": "pw"
        }

    def test_device_for_bad_password(self, cipher):
        profile = CredentialProfile(id=3, name="lab", username="netops", encrypted_password="@@@@")

        with pytest.raises(DecryptError):
            profile.device_for(11, "10.1.1.1", 22, cipher)
