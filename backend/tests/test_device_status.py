from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.device_status import (
    DeviceConvergence,
    DeviceRolloutStatus,
    is_canary_complete,
    is_online,
    pending_device_ids,
    status_of,
    summarize_statuses,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class DeviceStatusTests(unittest.TestCase):
    def test_converged_device_is_updated_even_when_offline(self) -> None:
        status = status_of(7, 7, NOW - timedelta(days=3), NOW)
        self.assertEqual(status, DeviceRolloutStatus.UPDATED)

    def test_online_unconverged_device_is_updating(self) -> None:
        status = status_of(6, 7, NOW - timedelta(minutes=1), NOW)
        self.assertEqual(status, DeviceRolloutStatus.UPDATING)

    def test_offline_or_never_seen_device_is_pending(self) -> None:
        self.assertEqual(status_of(6, 7, NOW - timedelta(minutes=20), NOW), DeviceRolloutStatus.PENDING)
        self.assertEqual(status_of(6, 7, None, NOW), DeviceRolloutStatus.PENDING)

    def test_liveness_boundary_is_inclusive(self) -> None:
        window = timedelta(minutes=5)
        self.assertTrue(is_online(NOW - window, NOW, window))
        self.assertFalse(is_online(NOW - window - timedelta(seconds=1), NOW, window))

    def test_naive_ping_is_treated_as_utc(self) -> None:
        naive = (NOW - timedelta(minutes=2)).replace(tzinfo=None)
        self.assertTrue(is_online(naive, NOW))

    def test_device_without_release_never_counts_as_converged(self) -> None:
        self.assertEqual(status_of(None, None, NOW, NOW), DeviceRolloutStatus.UPDATING)
        devices = [DeviceConvergence(device_id=4, release_id=None, target_release_id=None, last_ping=None)]
        self.assertEqual(pending_device_ids(devices), [4])

    def test_canary_completion_tracks_pending_devices(self) -> None:
        devices = [
            DeviceConvergence(device_id=3, release_id=6, target_release_id=7, last_ping=NOW),
            DeviceConvergence(device_id=1, release_id=7, target_release_id=7, last_ping=NOW),
        ]
        self.assertFalse(is_canary_complete(devices))
        self.assertEqual(pending_device_ids(devices), [3])
        self.assertTrue(is_canary_complete(devices[1:]))

    def test_empty_canary_is_complete(self) -> None:
        self.assertTrue(is_canary_complete([]))

    def test_summarize_reports_every_status(self) -> None:
        counts = summarize_statuses([DeviceRolloutStatus.UPDATED, DeviceRolloutStatus.UPDATED])
        self.assertEqual(counts, {"updated": 2, "updating": 0, "pending": 0})


if __name__ == "__main__":
    unittest.main()
