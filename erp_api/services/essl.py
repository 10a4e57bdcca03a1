"""
ESSL / ZKTeco biometric device connector.

Devices sit on the office LAN and are reached through the ESSL proxy, a small
HTTP service next to them:

    GET  /health  liveness, no auth
    POST /sync    {deviceIp, devicePort, timeout} -> {success, logs, deviceInfo, recordCount}
    POST /check   {deviceIp, devicePort, timeout} -> {success, reachable, error?}

Connection failures are retried with progressive backoff (backoff x attempt).
"""

import time
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import requests

from erp_api.config import settings
from erp_api.core.database import Database, jsonb
from erp_api.core.errors import DeviceConnectionError, ERPError, NotFoundError
from erp_api.core.logging import get_logger
from erp_api.core.models import DeviceAttendanceLog, PunchType

log = get_logger(__name__)

PUNCH_DIRECTIONS = {0: PunchType.IN, 1: PunchType.OUT, 2: PunchType.BREAK}

VERIFICATION_METHODS = {
    0: "password",
    1: "fingerprint",
    2: "card",
    3: "password+fingerprint",
    4: "password+card",
    5: "fingerprint+card",
    15: "face",
    25: "palm",
}


def map_punch_type(direction: int) -> PunchType:
    """Unknown directions count as IN; processing pairs them by time."""
    return PUNCH_DIRECTIONS.get(direction, PunchType.IN)


def map_verification_method(verify_mode: int) -> str:
    return VERIFICATION_METHODS.get(verify_mode, "unknown")


def to_device_time(value: str) -> datetime:
    """
    Convert a proxy timestamp to naive device wall-clock time.

    The proxy serializes device times as UTC ISO strings; punches are stored
    in the device's local time without a zone.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(ZoneInfo(settings.essl_device_timezone)).replace(tzinfo=None)


def _error_body(response: requests.Response) -> dict[str, Any]:
    """JSON error payload of a failed proxy call; gateways in front of it answer with HTML."""
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class ESSLConnector:
    """Client for the ESSL proxy."""

    def __init__(
        self,
        proxy_url: str | None = None,
        secret: str | None = None,
        timeout: int | None = None,
        retries: int | None = None,
        backoff: float | None = None,
    ):
        self.proxy_url = (proxy_url or settings.essl_proxy_url).rstrip("/")
        self.secret = secret if secret is not None else settings.essl_proxy_secret
        self.timeout = timeout or settings.essl_timeout_seconds
        self.retries = retries or settings.essl_connect_retries
        self.backoff = backoff if backoff is not None else settings.essl_retry_backoff_seconds

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.secret}"}

    def _post(self, endpoint: str, data: dict[str, Any]) -> dict[str, Any]:
        """POST to the proxy, retrying connection failures and 5xx answers."""
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                response = requests.post(
                    f"{self.proxy_url}{endpoint}",
                    json=data,
                    headers=self._auth_headers,
                    # device timeout plus headroom for the proxy itself
                    timeout=self.timeout + 5,
                )
                if response.status_code >= 500:
                    body = _error_body(response)
                    raise DeviceConnectionError(
                        body.get("error") or f"ESSL proxy returned {response.status_code}",
                        details=body.get("details"),
                    )
                if response.status_code >= 400:
                    body = _error_body(response)
                    # 4xx means a bad secret or request; retrying will not help
                    raise ERPError(
                        body.get("error") or f"ESSL proxy rejected the request ({response.status_code})",
                        details={"status_code": response.status_code},
                    )
                try:
                    return response.json()
                except ValueError:
                    raise DeviceConnectionError(
                        f"ESSL proxy returned a non-JSON response ({response.status_code})"
                    ) from None
            except (requests.ConnectionError, requests.Timeout, DeviceConnectionError) as e:
                last_error = e
                log.warning(
                    "essl_attempt_failed",
                    endpoint=endpoint,
                    device=data.get("deviceIp"),
                    attempt=attempt,
                    retries=self.retries,
                    error=str(e),
                )
                if attempt < self.retries:
                    time.sleep(self.backoff * attempt)

        if isinstance(last_error, DeviceConnectionError):
            raise last_error
        raise DeviceConnectionError(
            f"Connection failed after {self.retries} attempts to {data.get('deviceIp')}:{data.get('devicePort')}",
            details=str(last_error),
        )

    def health(self) -> dict[str, Any]:
        try:
            response = requests.get(f"{self.proxy_url}/health", timeout=5)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DeviceConnectionError("ESSL proxy is not reachable", details=str(e)) from e
        return response.json()

    def fetch_attendance(self, ip: str, port: int | None = None) -> tuple[list[DeviceAttendanceLog], dict[str, Any]]:
        """
        Download every attendance log stored on a device.

        Returns:
            (logs, device_info) where device_info is whatever the device reported
        """
        body = self._post("/sync", {
            "deviceIp": ip,
            "devicePort": port or settings.essl_default_port,
            "timeout": self.timeout * 1000,
        })
        if not body.get("success"):
            raise DeviceConnectionError(body.get("error") or "Device sync failed", details=body.get("details"))

        logs = [
            DeviceAttendanceLog(
                user_sn=str(raw.get("userSn") or raw.get("deviceUserId")),
                device_user_id=str(raw.get("deviceUserId")),
                record_time=to_device_time(raw["recordTime"]),
                direction=raw.get("direction") or 0,
                verify_mode=raw.get("verifyMode") or 1,
            )
            for raw in body.get("logs") or []
        ]
        log.info("essl_logs_fetched", device=ip, count=len(logs))
        return logs, body.get("deviceInfo") or {}

    def check_device(self, ip: str, port: int | None = None) -> dict[str, Any]:
        body = self._post("/check", {
            "deviceIp": ip,
            "devicePort": port or settings.essl_default_port,
            "timeout": self.timeout * 1000,
        })
        return {
            "reachable": bool(body.get("reachable")),
            "error": body.get("error"),
            "duration_ms": body.get("duration"),
        }


def sync_device(db: Database, device_id: int, connector: ESSLConnector | None = None) -> dict[str, Any]:
    """
    Pull punches from one device into attendance_punch_logs.

    Device users without an employee mapping are skipped and reported.
    Re-syncing is idempotent: (employee_id, device_id, punch_time) is unique.
    """
    device = db.fetch_one("SELECT * FROM essl_devices WHERE id = %s", (device_id,))
    if device is None:
        raise NotFoundError("Device", device_id)

    connector = connector or ESSLConnector()
    sync_log = db.execute(
        "INSERT INTO device_sync_logs (device_id, sync_type, sync_status) VALUES (%s, 'attendance', 'started') RETURNING id",
        (device_id,),
    )
    started = time.monotonic()

    try:
        logs, device_info = connector.fetch_attendance(device["ip_address"], device["port"])

        employees = db.fetch_all("SELECT id, essl_device_id FROM employees WHERE essl_device_id IS NOT NULL")
        employee_by_user = {row["essl_device_id"]: row["id"] for row in employees}

        rows = []
        unmapped: set[str] = set()
        for entry in logs:
            employee_id = employee_by_user.get(entry.device_user_id)
            if employee_id is None:
                unmapped.add(entry.device_user_id)
                continue
            rows.append((
                employee_id,
                device_id,
                entry.record_time,
                map_punch_type(entry.direction).value,
                map_verification_method(entry.verify_mode),
                entry.device_user_id,
                jsonb({"userSn": entry.user_sn, "direction": entry.direction, "verifyMode": entry.verify_mode}),
            ))

        with db.transaction() as conn:
            inserted = 0
            if rows:
                with conn.cursor() as cur:
                    cur.executemany(
                        """
                        INSERT INTO attendance_punch_logs (
                            employee_id, device_id, punch_time, punch_type,
                            verification_method, device_user_id, raw_data
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (employee_id, device_id, punch_time) DO NOTHING
                        """,
                        rows,
                    )
                    inserted = max(cur.rowcount, 0)
            conn.execute(
                """
                UPDATE essl_devices
                SET last_connected = NOW(), serial_number = COALESCE(%s, serial_number)
                WHERE id = %s
                """,
                (device_info.get("serialNumber"), device_id),
            )
            duration_ms = int((time.monotonic() - started) * 1000)
            conn.execute(
                """
                UPDATE device_sync_logs
                SET sync_status = 'completed', records_fetched = %s, records_synced = %s,
                    records_skipped = %s, unmapped_user_ids = %s, sync_duration_ms = %s,
                    finished_at = NOW()
                WHERE id = %s
                """,
                (len(logs), inserted, len(logs) - len(rows), jsonb(sorted(unmapped)), duration_ms, sync_log["id"]),
            )
    except Exception as e:
        # the sync log must never stay 'started', whatever broke
        message = e.message if isinstance(e, ERPError) else f"{type(e).__name__}: {e}"
        db.execute(
            """
            UPDATE device_sync_logs
            SET sync_status = 'failed', error_message = %s, sync_duration_ms = %s, finished_at = NOW()
            WHERE id = %s
            """,
            (message, int((time.monotonic() - started) * 1000), sync_log["id"]),
        )
        log.error("essl_sync_failed", device_id=device_id, device=device["device_name"], error=message)
        raise

    result = {
        "device_id": device_id,
        "device_name": device["device_name"],
        "fetched": len(logs),
        "synced": inserted,
        "duplicates": len(rows) - inserted,
        "skipped": len(logs) - len(rows),
        "unmapped_user_ids": sorted(unmapped),
        "duration_ms": duration_ms,
    }
    log.info("essl_sync_completed", **result)
    return result


def sync_all_devices(db: Database, connector: ESSLConnector | None = None) -> dict[str, Any]:
    """Sync every active device; one failing device does not stop the rest."""
    devices = db.fetch_all("SELECT id, device_name, ip_address FROM essl_devices WHERE status = 'active' ORDER BY id")
    connector = connector or ESSLConnector()

    results = []
    for device in devices:
        try:
            outcome = sync_device(db, device["id"], connector)
            results.append({**outcome, "success": True})
        except Exception as e:
            if isinstance(e, ERPError):
                error = e.message
            else:
                log.exception("essl_sync_crashed", device_id=device["id"])
                error = f"{type(e).__name__}: {e}"
            results.append({
                "device_id": device["id"],
                "device_name": device["device_name"],
                "ip_address": device["ip_address"],
                "success": False,
                "synced": 0,
                "error": error,
            })

    successful = sum(1 for r in results if r["success"])
    return {
        "total_records": sum(r["synced"] for r in results),
        "devices_attempted": len(devices),
        "devices_successful": successful,
        "devices_failed": len(devices) - successful,
        "results": results,
    }
