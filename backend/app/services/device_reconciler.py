from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.domain.device_status import DeviceRolloutStatus, status_of
from app.models import Deployment, DeploymentDevice, ReleaseService
from app.models.common import normalize_utc, utcnow
from app.services.device_directory import DeviceDirectory, DeviceRef, directory_errors


@dataclass(frozen=True)
class ReconciledDevice:
    device_id: int
    serial_number: str
    release_id: int | None
    target_release_id: int | None
    last_ping: datetime | None
    added_at: datetime
    status: DeviceRolloutStatus
    services_healthy: bool | None = None
    services_status: Any = None


def list_canary_rows(db: Session, deployment_id: int) -> list[DeploymentDevice]:
    with directory_errors("canary_read"):
        return (
            db.query(DeploymentDevice)
            .filter(DeploymentDevice.deployment_id == deployment_id)
            .order_by(DeploymentDevice.added_at.asc(), DeploymentDevice.id.asc())
            .all()
        )


def watchdog_service_names(db: Session, release_id: int) -> list[str]:
    with directory_errors("services_read"):
        rows = (
            db.query(ReleaseService.service_name)
            .filter(ReleaseService.release_id == release_id, ReleaseService.watchdog_sec.is_not(None))
            .order_by(ReleaseService.service_name.asc())
            .all()
        )
    return [row[0] for row in rows]


def compute_services_healthy(services_status: Any, required_services: list[str]) -> bool | None:
    """Informational only; service health never gates the rollout."""
    if not required_services:
        return None
    if not isinstance(services_status, list):
        return False

    reported = {
        item.get("name"): item
        for item in services_status
        if isinstance(item, dict) and isinstance(item.get("name"), str)
    }
    for service_name in required_services:
        item = reported.get(service_name)
        if item is None or item.get("healthy") is not True:
            return False
    return True


def _live_device(row: DeploymentDevice, live: DeviceRef | None) -> DeviceRef:
    if live is not None:
        return live
    # Device vanished from the directory; fall back to the snapshot.
    return DeviceRef(
        id=row.device_id,
        serial_number=row.serial_number,
        release_id=row.release_id,
        target_release_id=row.target_release_id,
        last_ping=normalize_utc(row.last_ping),
    )


def reconcile_deployment_devices(
    db: Session,
    deployment: Deployment,
    *,
    directory: DeviceDirectory | None = None,
    now: datetime | None = None,
    liveness_window: timedelta | None = None,
) -> list[ReconciledDevice]:
    directory = directory or DeviceDirectory(db)
    now = now or utcnow()
    window = liveness_window or directory.liveness_window

    rows = list_canary_rows(db, deployment.id)
    live_by_id = {device.id: device for device in directory.get_devices(row.device_id for row in rows)}
    required_services = watchdog_service_names(db, deployment.release_id)

    reconciled: list[ReconciledDevice] = []
    for row in rows:
        device = _live_device(row, live_by_id.get(row.device_id))
        reconciled.append(
            ReconciledDevice(
                device_id=device.id,
                serial_number=device.serial_number,
                release_id=device.release_id,
                target_release_id=device.target_release_id,
                last_ping=device.last_ping,
                added_at=normalize_utc(row.added_at),
                status=status_of(device.release_id, device.target_release_id, device.last_ping, now, window),
                services_healthy=compute_services_healthy(device.services_status, required_services),
                services_status=device.services_status,
            )
        )
    return reconciled
