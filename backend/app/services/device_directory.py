"""SQL-backed adapter over the device inventory.

The rollout controller treats the device inventory as an external collaborator:
it queries devices by distribution, liveness, outdatedness and labels, and it
writes exactly one field back, ``target_release_id``. Storage failures surface as
``DeviceDirectoryUnavailableError`` so callers can roll back without recording a
state transition.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.domain.canary_selection import LabelFilter
from app.domain.device_status import DeviceConvergence
from app.domain.errors import DeviceDirectoryUnavailableError, DeviceNotFoundError, ReleaseNotFoundError
from app.models import Device, DeviceLabel, DeviceNetwork, Release
from app.models.common import normalize_utc, utcnow


@dataclass(frozen=True)
class DeviceRef:
    id: int
    serial_number: str
    release_id: int | None
    target_release_id: int | None
    last_ping: datetime | None
    distribution_id: int | None = None
    network_score: int | None = None
    labels: dict[str, str] = field(default_factory=dict)
    services_status: Any = None

    def convergence(self) -> DeviceConvergence:
        return DeviceConvergence(
            device_id=self.id,
            release_id=self.release_id,
            target_release_id=self.target_release_id,
            last_ping=self.last_ping,
        )


def _to_device_ref(device: Device, distribution_id: int | None) -> DeviceRef:
    system_info = device.system_info if isinstance(device.system_info, dict) else {}
    return DeviceRef(
        id=device.id,
        serial_number=device.serial_number,
        release_id=device.release_id,
        target_release_id=device.target_release_id,
        last_ping=normalize_utc(device.last_ping),
        distribution_id=distribution_id,
        network_score=device.network.network_score if device.network is not None else None,
        labels={label.name: label.value for label in device.labels},
        services_status=system_info.get("services_status"),
    )


@contextmanager
def directory_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise DeviceDirectoryUnavailableError(
            f"device_directory_{operation}_failed:{exc.__class__.__name__}"
        ) from exc


class DeviceDirectory:
    def __init__(self, db: Session, *, liveness_window: timedelta | None = None) -> None:
        self.db = db
        if liveness_window is None:
            liveness_window = timedelta(seconds=get_settings().device_liveness_window_seconds)
        self.liveness_window = liveness_window

    def _base_query(self):
        return self.db.query(Device, Release.distribution_id).outerjoin(Release, Device.release_id == Release.id)

    def query_devices(
        self,
        *,
        distribution_id: int | None = None,
        online: bool | None = None,
        outdated: bool | None = None,
        labels: Iterable[LabelFilter] = (),
        release_id: int | None = None,
        exclude_target_release_id: int | None = None,
        order_by_network_score: bool = False,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[DeviceRef]:
        now = now or utcnow()
        query = self._base_query()

        if distribution_id is not None:
            query = query.filter(Release.distribution_id == distribution_id)
        if release_id is not None:
            query = query.filter(Device.release_id == release_id)

        if online is not None:
            cutoff = now - self.liveness_window
            if online:
                query = query.filter(Device.last_ping.is_not(None), Device.last_ping >= cutoff)
            else:
                query = query.filter(or_(Device.last_ping.is_(None), Device.last_ping < cutoff))

        # A device with no target yet is not behind on anything.
        is_outdated = and_(Device.target_release_id.is_not(None), Device.release_id != Device.target_release_id)
        if outdated is True:
            query = query.filter(is_outdated)
        elif outdated is False:
            query = query.filter(
                or_(Device.target_release_id.is_(None), Device.release_id == Device.target_release_id)
            )

        if exclude_target_release_id is not None:
            query = query.filter(
                or_(Device.target_release_id.is_(None), Device.target_release_id != exclude_target_release_id)
            )

        for label in labels:
            query = query.filter(Device.labels.any(and_(DeviceLabel.name == label.key, DeviceLabel.value == label.value)))

        if order_by_network_score:
            query = query.outerjoin(DeviceNetwork, DeviceNetwork.device_id == Device.id).order_by(
                func.coalesce(DeviceNetwork.network_score, 0).desc(),
                Device.id.asc(),
            )
        else:
            query = query.order_by(Device.id.asc())

        if limit is not None:
            query = query.limit(limit)

        with directory_errors("query"):
            rows = query.all()
        return [_to_device_ref(device, dist_id) for device, dist_id in rows]

    def get_devices(self, device_ids: Iterable[int]) -> list[DeviceRef]:
        ids = sorted(set(device_ids))
        if not ids:
            return []
        with directory_errors("read"):
            rows = self._base_query().filter(Device.id.in_(ids)).order_by(Device.id.asc()).all()
        return [_to_device_ref(device, dist_id) for device, dist_id in rows]

    def set_target_release(self, device_ids: Iterable[int], release_id: int) -> int:
        ids = sorted(set(device_ids))
        if not ids:
            return 0
        with directory_errors("write"):
            devices = self.db.query(Device).filter(Device.id.in_(ids)).all()
            for device in devices:
                device.target_release_id = release_id
            self.db.flush()
        return len(devices)

    def set_target_release_for_distribution(
        self,
        distribution_id: int,
        release_id: int,
        *,
        exclude_device_ids: Iterable[int] = (),
    ) -> int:
        excluded = sorted(set(exclude_device_ids))
        distribution_releases = select(Release.id).where(Release.distribution_id == distribution_id)
        query = self.db.query(Device).filter(Device.release_id.in_(distribution_releases))
        if excluded:
            query = query.filter(Device.id.not_in(excluded))
        with directory_errors("write"):
            updated = query.update({Device.target_release_id: release_id}, synchronize_session="fetch")
            self.db.flush()
        return int(updated or 0)

    def record_heartbeat(
        self,
        device_id: int,
        *,
        release_id: int | None = None,
        services_status: list[dict[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> DeviceRef:
        with directory_errors("write"):
            row = self._base_query().filter(Device.id == device_id).first()
            if row is None:
                raise DeviceNotFoundError(f"device_not_found:{device_id}")
            device = row[0]
            if release_id is not None and self.db.get(Release, release_id) is None:
                raise ReleaseNotFoundError(f"release_not_found:{release_id}")
            device.last_ping = now or utcnow()
            if release_id is not None:
                device.release_id = release_id
            if services_status is not None:
                system_info = dict(device.system_info or {})
                system_info["services_status"] = services_status
                device.system_info = system_info
            self.db.flush()
            distribution_id = (
                self.db.query(Release.distribution_id).filter(Release.id == device.release_id).scalar()
                if device.release_id is not None
                else None
            )
        return _to_device_ref(device, distribution_id)
