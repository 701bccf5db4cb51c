from __future__ import annotations

from datetime import datetime

from app.core.config import get_settings
from app.domain.canary_selection import (
    AutomaticSelection,
    CanarySelection,
    DeviceSelection,
    LabelSelection,
)
from app.domain.errors import (
    EmptySelectionError,
    InvalidSelectionError,
    MixedDistributionError,
    NoDistributionError,
    UnknownDeviceError,
)
from app.models import Release
from app.models.common import utcnow
from app.services.device_directory import DeviceDirectory, DeviceRef


def _automatic_limit() -> int:
    return max(1, int(get_settings().canary_automatic_limit))


def _select_automatic(
    directory: DeviceDirectory,
    release: Release,
    *,
    limit: int,
    now: datetime,
) -> list[DeviceRef]:
    return directory.query_devices(
        distribution_id=release.distribution_id,
        online=True,
        outdated=False,
        exclude_target_release_id=release.id,
        order_by_network_score=True,
        limit=limit,
        now=now,
    )


def _select_by_labels(
    directory: DeviceDirectory,
    release: Release,
    selection: LabelSelection,
    *,
    now: datetime,
) -> list[DeviceRef]:
    if not selection.labels:
        raise EmptySelectionError("canary_label_selection_empty")
    return directory.query_devices(
        distribution_id=release.distribution_id,
        online=True,
        outdated=False,
        exclude_target_release_id=release.id,
        labels=sorted(selection.labels),
        now=now,
    )


def _select_by_devices(
    directory: DeviceDirectory,
    release: Release,
    selection: DeviceSelection,
) -> list[DeviceRef]:
    if not selection.device_ids:
        raise EmptySelectionError("canary_device_selection_empty")

    devices = directory.get_devices(selection.device_ids)
    missing = set(selection.device_ids) - {device.id for device in devices}
    if missing:
        raise UnknownDeviceError(missing)

    without_release = [device.id for device in devices if device.distribution_id is None]
    if without_release:
        raise NoDistributionError(without_release)

    distribution_ids = {device.distribution_id for device in devices}
    if len(distribution_ids) > 1:
        raise MixedDistributionError(distribution_ids)
    if distribution_ids != {release.distribution_id}:
        raise MixedDistributionError(distribution_ids, expected=release.distribution_id)

    # Operator's explicit list is taken verbatim, online or not.
    return devices


def select_canary_devices(
    directory: DeviceDirectory,
    release: Release,
    selection: CanarySelection,
    *,
    automatic_limit: int | None = None,
    now: datetime | None = None,
) -> list[DeviceRef]:
    """Resolve a canary selection against the directory's current snapshot.

    Pure with respect to the directory: nothing is written or locked. Raises a
    ``SelectionError`` subclass when the selection is malformed or resolves to
    no devices.
    """
    now = now or utcnow()
    if isinstance(selection, AutomaticSelection):
        devices = _select_automatic(directory, release, limit=automatic_limit or _automatic_limit(), now=now)
    elif isinstance(selection, LabelSelection):
        devices = _select_by_labels(directory, release, selection, now=now)
    elif isinstance(selection, DeviceSelection):
        devices = _select_by_devices(directory, release, selection)
    else:
        raise InvalidSelectionError(f"unsupported_canary_selection:{type(selection).__name__}")

    if not devices:
        raise EmptySelectionError(f"canary_selection_matched_no_devices:{selection.strategy}")
    return devices
