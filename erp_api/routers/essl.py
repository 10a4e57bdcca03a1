"""
ESSL biometric devices.

GET/POST  /essl/devices
POST      /essl/sync
POST      /essl/devices/{device_id}/test
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from erp_api.config import settings
from erp_api.core.database import Database
from erp_api.core.errors import NotFoundError
from erp_api.core.logging import get_logger
from erp_api.services import essl

log = get_logger(__name__)
router = APIRouter()


class DeviceCreate(BaseModel):
    device_name: str
    ip_address: str
    port: int = Field(default_factory=lambda: settings.essl_default_port, gt=0, lt=65536)
    location: str | None = None


class SyncRequest(BaseModel):
    device_id: int | None = None


@router.get("/essl/devices")
def list_devices():
    db = Database()
    rows = db.fetch_all(
        """
        SELECT d.*, s.sync_status AS last_sync_status, s.records_synced AS last_sync_records,
               s.started_at AS last_sync_at, s.error_message AS last_sync_error
        FROM essl_devices d
        LEFT JOIN LATERAL (
            SELECT sync_status, records_synced, started_at, error_message
            FROM device_sync_logs WHERE device_id = d.id
            ORDER BY started_at DESC LIMIT 1
        ) s ON TRUE
        ORDER BY d.device_name
        """
    )
    return {"success": True, "data": rows}


@router.post("/essl/devices", status_code=201)
def create_device(request: DeviceCreate):
    db = Database()
    row = db.execute(
        """
        INSERT INTO essl_devices (device_name, ip_address, port, location)
        VALUES (%(device_name)s, %(ip_address)s, %(port)s, %(location)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("essl_device_registered", device_id=row["id"], ip=row["ip_address"], port=row["port"])
    return {"success": True, "data": row}


@router.post("/essl/sync")
def sync(request: SyncRequest | None = None):
    """Sync one device, or every active device when no device_id is given."""
    db = Database()
    if request is not None and request.device_id is not None:
        return {"success": True, "data": essl.sync_device(db, request.device_id)}
    return {"success": True, "data": essl.sync_all_devices(db)}


@router.post("/essl/devices/{device_id}/test")
def test_device(device_id: int):
    db = Database()
    device = db.fetch_one("SELECT id, device_name, ip_address, port FROM essl_devices WHERE id = %s", (device_id,))
    if device is None:
        raise NotFoundError("Device", device_id)

    result = essl.ESSLConnector().check_device(device["ip_address"], device["port"])
    if result["reachable"]:
        db.execute("UPDATE essl_devices SET last_connected = NOW() WHERE id = %s", (device_id,))
    log.info("essl_device_tested", device_id=device_id, reachable=result["reachable"])
    return {"success": True, "data": {**device, **result}}
