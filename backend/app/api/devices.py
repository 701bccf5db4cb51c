from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.errors import http_error
from app.db.session import get_db_session
from app.domain.errors import RolloutError
from app.services.device_directory import DeviceDirectory

router = APIRouter(prefix="/api/devices", tags=["devices"])


class ServiceStatusPayload(BaseModel):
    name: str
    active: bool = False
    healthy: bool = False
    uptime_sec: int | None = None


class HeartbeatRequest(BaseModel):
    release_id: int | None = None
    services_status: list[ServiceStatusPayload] | None = None


class HeartbeatResponse(BaseModel):
    device_id: int
    serial_number: str
    release_id: int | None
    target_release_id: int | None
    last_ping: datetime | None
    labels: dict[str, Any]


@router.post("/{device_id}/heartbeat", response_model=HeartbeatResponse)
def post_device_heartbeat(
    device_id: int,
    payload: HeartbeatRequest | None = None,
    db: Session = Depends(get_db_session),
) -> HeartbeatResponse:
    payload = payload or HeartbeatRequest()
    services_status = (
        [item.model_dump() for item in payload.services_status] if payload.services_status is not None else None
    )
    try:
        device = DeviceDirectory(db).record_heartbeat(
            device_id,
            release_id=payload.release_id,
            services_status=services_status,
        )
        db.commit()
    except RolloutError as exc:
        db.rollback()
        raise http_error(exc) from exc

    # The device reads its target release from the reply.
    return HeartbeatResponse(
        device_id=device.id,
        serial_number=device.serial_number,
        release_id=device.release_id,
        target_release_id=device.target_release_id,
        last_ping=device.last_ping,
        labels=device.labels,
    )
