"""Unit tests for the ESSL connector and device sync."""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from erp_api.core.errors import DeviceConnectionError, ERPError, NotFoundError
from erp_api.core.models import DeviceAttendanceLog, PunchType
from erp_api.services import essl


def response(status_code: int, body: dict) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.content = b"{}"
    mock.json.return_value = body
    return mock


class TestMappings:
    @pytest.mark.parametrize(
        "direction, expected",
        [(0, PunchType.IN), (1, PunchType.OUT), (2, PunchType.BREAK), (5, PunchType.IN), (-1, PunchType.IN)],
    )
    def test_punch_direction(self, direction, expected):
        assert essl.map_punch_type(direction) == expected

    def test_verification_methods(self):
        assert essl.map_verification_method(1) == "fingerprint"
        assert essl.map_verification_method(15) == "face"
        assert essl.map_verification_method(25) == "palm"
        assert essl.map_verification_method(5) == "fingerprint+card"
        assert essl.map_verification_method(9) == "unknown"

    def test_utc_timestamps_converted_to_device_time(self):
        assert essl.to_device_time("2026-01-15T03:30:00.000Z") == datetime(2026, 1, 15, 9, 0)

    def test_naive_timestamps_kept(self):
        assert essl.to_device_time("2026-01-15T09:00:00") == datetime(2026, 1, 15, 9, 0)


class TestConnector:
    def connector(self) -> essl.ESSLConnector:
        return essl.ESSLConnector(proxy_url="http://proxy:3001/", secret="s3cret", timeout=10, retries=2, backoff=2.0)

    def test_retries_connection_errors_with_backoff(self):
        with patch("erp_api.services.essl.requests.post", side_effect=requests.ConnectionError("refused")) as post, \
                patch("erp_api.services.essl.time.sleep") as sleep:
            with pytest.raises(DeviceConnectionError, match="after 2 attempts"):
                self.connector().fetch_attendance("192.168.1.201", 4370)

        assert post.call_count == 2
        sleep.assert_called_once_with(2.0)

    def test_server_error_retried_then_succeeds(self):
        ok = response(200, {
            "success": True,
            "logs": [{"userSn": 7, "deviceUserId": "101", "recordTime": "2026-01-15T03:30:00Z",
                      "direction": 1, "verifyMode": 15}],
            "deviceInfo": {"serialNumber": "CQZ7"},
        })
        with patch("erp_api.services.essl.requests.post", side_effect=[response(503, {"error": "busy"}), ok]) as post, \
                patch("erp_api.services.essl.time.sleep"):
            logs, info = self.connector().fetch_attendance("192.168.1.201")

        assert post.call_count == 2
        assert info == {"serialNumber": "CQZ7"}
        assert logs == [DeviceAttendanceLog(
            user_sn="7", device_user_id="101", record_time=datetime(2026, 1, 15, 9, 0), direction=1, verify_mode=15,
        )]

    def test_client_error_not_retried(self):
        with patch("erp_api.services.essl.requests.post", return_value=response(401, {"error": "Unauthorized"})) as post, \
                patch("erp_api.services.essl.time.sleep") as sleep:
            with pytest.raises(ERPError, match="Unauthorized") as exc:
                self.connector().check_device("192.168.1.201")

        assert not isinstance(exc.value, DeviceConnectionError)
        assert post.call_count == 1
        sleep.assert_not_called()

    def test_request_carries_secret_and_device(self):
        with patch("erp_api.services.essl.requests.post", return_value=response(200, {"reachable": True})) as post:
            result = self.connector().check_device("192.168.1.201", 4370)

        assert result["reachable"] is True
        args, kwargs = post.call_args
        assert args[0] == "http://proxy:3001/check"
        assert kwargs["headers"] == {"Authorization": "Bearer s3cret"}
        assert kwargs["json"] == {"deviceIp": "192.168.1.201", "devicePort": 4370, "timeout": 10000}

    def test_unsuccessful_sync_body_raises(self):
        with patch("erp_api.services.essl.requests.post", return_value=response(200, {"success": False, "error": "Timeout"})):
            with pytest.raises(DeviceConnectionError, match="Timeout"):
                self.connector().fetch_attendance("192.168.1.201")

    def test_html_gateway_error_retried_as_connection_failure(self):
        gateway = MagicMock()
        gateway.status_code = 502
        gateway.content = b"<html><body>502 Bad Gateway</body></html>"
        gateway.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)
        with patch("erp_api.services.essl.requests.post", return_value=gateway) as post, \
                patch("erp_api.services.essl.time.sleep"):
            with pytest.raises(DeviceConnectionError, match="returned 502"):
                self.connector().fetch_attendance("192.168.1.201")

        assert post.call_count == 2

    def test_non_json_success_body_is_a_connection_failure(self):
        garbled = response(200, {})
        garbled.json.side_effect = ValueError("Expecting value")
        with patch("erp_api.services.essl.requests.post", return_value=garbled) as post, \
                patch("erp_api.services.essl.time.sleep"):
            with pytest.raises(DeviceConnectionError, match="non-JSON"):
                self.connector().check_device("192.168.1.201")

        assert post.call_count == 2


class TestSyncDevice:
    device = {"id": 3, "device_name": "Front Door", "ip_address": "192.168.1.201", "port": 4370}

    def logs(self):
        at = datetime(2026, 1, 15, 9, 0)
        return [
            DeviceAttendanceLog(user_sn="1", device_user_id="101", record_time=at, direction=0),
            DeviceAttendanceLog(user_sn="1", device_user_id="101", record_time=at.replace(hour=18), direction=1),
            DeviceAttendanceLog(user_sn="2", device_user_id="999", record_time=at, direction=0),
        ]

    def test_unmapped_users_skipped_and_duplicates_counted(self, mock_db):
        mock_db.fetch_one.return_value = self.device
        mock_db.execute.return_value = {"id": 55}
        mock_db.fetch_all.return_value = [{"id": 1, "essl_device_id": "101"}]
        cursor = mock_db.conn.cursor.return_value.__enter__.return_value
        cursor.rowcount = 1
        connector = MagicMock()
        connector.fetch_attendance.return_value = (self.logs(), {"serialNumber": "CQZ7"})

        result = essl.sync_device(mock_db, 3, connector)

        assert result["fetched"] == 3
        assert result["synced"] == 1
        assert result["duplicates"] == 1
        assert result["skipped"] == 1
        assert result["unmapped_user_ids"] == ["999"]
        rows = cursor.executemany.call_args[0][1]
        assert [row[3] for row in rows] == ["IN", "OUT"]

    def test_failure_marks_sync_log_and_reraises(self, mock_db):
        mock_db.fetch_one.return_value = self.device
        mock_db.execute.return_value = {"id": 55}
        connector = MagicMock()
        connector.fetch_attendance.side_effect = DeviceConnectionError("Device offline")

        with pytest.raises(DeviceConnectionError):
            essl.sync_device(mock_db, 3, connector)

        sql, params = mock_db.execute.call_args[0]
        assert "sync_status = 'failed'" in sql
        assert params[0] == "Device offline"

    def test_unexpected_error_still_marks_sync_log_failed(self, mock_db):
        mock_db.fetch_one.return_value = self.device
        mock_db.execute.return_value = {"id": 55}
        mock_db.fetch_all.return_value = [{"id": 1, "essl_device_id": "101"}]
        mock_db.conn.cursor.return_value.__enter__.return_value.executemany.side_effect = RuntimeError("lost connection")
        connector = MagicMock()
        connector.fetch_attendance.return_value = (self.logs(), {})

        with pytest.raises(RuntimeError):
            essl.sync_device(mock_db, 3, connector)

        sql, params = mock_db.execute.call_args[0]
        assert "sync_status = 'failed'" in sql
        assert params[0] == "RuntimeError: lost connection"
        assert params[2] == 55

    def test_missing_device(self, mock_db):
        mock_db.fetch_one.return_value = None
        with pytest.raises(NotFoundError):
            essl.sync_device(mock_db, 404, MagicMock())


def test_sync_all_devices_continues_past_failures(mock_db):
    mock_db.fetch_all.return_value = [
        {"id": 1, "device_name": "Front Door", "ip_address": "10.0.0.1"},
        {"id": 2, "device_name": "Warehouse", "ip_address": "10.0.0.2"},
    ]
    outcomes = [{"device_id": 1, "synced": 5}, DeviceConnectionError("Device offline")]
    with patch("erp_api.services.essl.sync_device", side_effect=outcomes):
        result = essl.sync_all_devices(mock_db, MagicMock())

    assert result["total_records"] == 5
    assert result["devices_attempted"] == 2
    assert result["devices_successful"] == 1
    assert result["devices_failed"] == 1
    assert result["results"][1]["error"] == "Device offline"


def test_sync_all_devices_survives_unexpected_errors(mock_db):
    mock_db.fetch_all.return_value = [
        {"id": 1, "device_name": "Front Door", "ip_address": "10.0.0.1"},
        {"id": 2, "device_name": "Warehouse", "ip_address": "10.0.0.2"},
    ]
    outcomes = [KeyError("logs"), {"device_id": 2, "synced": 4}]
    with patch("erp_api.services.essl.sync_device", side_effect=outcomes):
        result = essl.sync_all_devices(mock_db, MagicMock())

    assert result["devices_successful"] == 1
    assert result["devices_failed"] == 1
    assert result["total_records"] == 4
    assert result["results"][0]["success"] is False
    assert result["results"][0]["error"].startswith("KeyError")
