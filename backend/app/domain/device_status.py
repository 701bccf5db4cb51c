"""Per-device rollout status.

The three-way Updated / Updating / Pending judgment is made here and nowhere
else. Callers read ``now`` once per reconciliation pass and pass it in.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from app.models.common import normalize_utc

DEFAULT_LIVENESS_WINDOW = timedelta(minutes=5)


class DeviceRolloutStatus(str, Enum):
    UPDATED = "updated"
    UPDATING = "updating"
    PENDING = "pending"


@dataclass(frozen=True)
class DeviceConvergence:
    device_id: int
    release_id: int | None
    target_release_id: int | None
    last_ping: datetime | None


def is_converged(release_id: int | None, target_release_id: int | None) -> bool:
    return release_id is not None and release_id == target_release_id


def is_online(
    last_ping: datetime | None,
    now: datetime,
    liveness_window: timedelta = DEFAULT_LIVENESS_WINDOW,
) -> bool:
    ping = normalize_utc(last_ping)
    if ping is None:
        return False
    return now - ping <= liveness_window


def status_of(
    release_id: int | None,
    target_release_id: int | None,
    last_ping: datetime | None,
    now: datetime,
    liveness_window: timedelta = DEFAULT_LIVENESS_WINDOW,
) -> DeviceRolloutStatus:
    if is_converged(release_id, target_release_id):
        return DeviceRolloutStatus.UPDATED
    if is_online(last_ping, now, liveness_window):
        return DeviceRolloutStatus.UPDATING
    return DeviceRolloutStatus.PENDING


def pending_device_ids(devices: Iterable[DeviceConvergence]) -> list[int]:
    return sorted(
        device.device_id
        for device in devices
        if not is_converged(device.release_id, device.target_release_id)
    )


def is_canary_complete(devices: Iterable[DeviceConvergence]) -> bool:
    # An empty canary set is vacuously complete.
    return not pending_device_ids(devices)


def summarize_statuses(statuses: Iterable[DeviceRolloutStatus]) -> dict[str, int]:
    counts = {status.value: 0 for status in DeviceRolloutStatus}
    for status in statuses:
        counts[status.value] += 1
    return counts
