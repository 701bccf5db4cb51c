from __future__ import annotations

import os
from pathlib import Path
import sys
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

BACKEND_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for path in (BACKEND_ROOT, TESTS_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.db.base import Base
from app.domain.canary_selection import AutomaticSelection, LabelFilter, by_devices, by_labels
from app.domain.errors import (
    EmptySelectionError,
    MixedDistributionError,
    NoDistributionError,
    UnknownDeviceError,
)
from app.services.canary_selector import select_canary_devices
from app.services.device_directory import DeviceDirectory
from fleet_fixtures import make_device, make_distribution, make_release, minutes_ago


class CanarySelectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.db = self.session_factory()

        self.distribution = make_distribution(self.db)
        self.old = make_release(self.db, self.distribution, "1.0.0")
        self.new = make_release(self.db, self.distribution, "1.1.0")
        self.db.commit()
        self.directory = DeviceDirectory(self.db)

    def tearDown(self) -> None:
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _online(self, serial: str, **kwargs):
        kwargs.setdefault("release", self.old)
        kwargs.setdefault("target", self.old)
        return make_device(self.db, serial, last_ping=minutes_ago(1), **kwargs)

    def test_automatic_ranks_by_network_score_and_caps(self) -> None:
        low = self._online("LOW", network_score=1)
        high = self._online("HIGH", network_score=5)
        unscored = self._online("UNSCORED")
        mid = self._online("MID", network_score=3)
        self.db.commit()

        devices = select_canary_devices(self.directory, self.new, AutomaticSelection(), automatic_limit=3)

        self.assertEqual([device.id for device in devices], [high.id, mid.id, low.id])
        self.assertNotIn(unscored.id, [device.id for device in devices])

    def test_automatic_skips_offline_outdated_and_already_targeted_devices(self) -> None:
        eligible = self._online("OK")
        make_device(self.db, "OFFLINE", release=self.old, target=self.old, last_ping=minutes_ago(30))
        make_device(self.db, "NEVER", release=self.old, target=self.old)
        self._online("OUTDATED", target=self.new)
        self._online("BUSY", release=self.new, target=self.new)
        untargeted = self._online("UNTARGETED", target=None)
        other_distribution = make_distribution(self.db, "other-os")
        other_release = make_release(self.db, other_distribution, "9.0.0")
        self._online("FOREIGN", release=other_release, target=other_release)
        self.db.commit()

        devices = select_canary_devices(self.directory, self.new, AutomaticSelection())

        self.assertEqual(sorted(device.id for device in devices), sorted([eligible.id, untargeted.id]))

    def test_automatic_with_no_candidates_is_empty_selection(self) -> None:
        make_device(self.db, "OFFLINE", release=self.old, target=self.old, last_ping=minutes_ago(30))
        self.db.commit()
        with self.assertRaises(EmptySelectionError):
            select_canary_devices(self.directory, self.new, AutomaticSelection())

    def test_labels_require_every_pair_to_match(self) -> None:
        both = self._online("BOTH", labels={"site": "lab", "ring": "canary"})
        self._online("SITE_ONLY", labels={"site": "lab"})
        self._online("WRONG_VALUE", labels={"site": "field", "ring": "canary"})
        self.db.commit()

        selection = by_labels([LabelFilter.create("site", "lab"), LabelFilter.create("ring", "canary")])
        devices = select_canary_devices(self.directory, self.new, selection)

        self.assertEqual([device.id for device in devices], [both.id])
        self.assertEqual(devices[0].labels, {"site": "lab", "ring": "canary"})

    def test_labels_matching_nothing_is_empty_selection(self) -> None:
        self._online("LAB", labels={"site": "lab"})
        self.db.commit()
        with self.assertRaises(EmptySelectionError):
            select_canary_devices(self.directory, self.new, by_labels(["site=mars"]))

    def test_explicit_devices_are_taken_verbatim(self) -> None:
        offline = make_device(self.db, "OFFLINE", release=self.old, target=self.old, last_ping=minutes_ago(90))
        outdated = self._online("OUTDATED", target=self.new)
        self.db.commit()

        devices = select_canary_devices(self.directory, self.new, by_devices([offline.id, outdated.id]))

        self.assertEqual([device.id for device in devices], [offline.id, outdated.id])

    def test_explicit_unknown_device_is_rejected(self) -> None:
        known = self._online("KNOWN")
        self.db.commit()
        with self.assertRaises(UnknownDeviceError) as ctx:
            select_canary_devices(self.directory, self.new, by_devices([known.id, 9999]))
        self.assertEqual(ctx.exception.device_ids, [9999])

    def test_explicit_device_without_release_has_no_distribution(self) -> None:
        blank = make_device(self.db, "BLANK", last_ping=minutes_ago(1))
        self.db.commit()
        with self.assertRaises(NoDistributionError):
            select_canary_devices(self.directory, self.new, by_devices([blank.id]))

    def test_explicit_devices_spanning_distributions_are_rejected(self) -> None:
        other_distribution = make_distribution(self.db, "other-os")
        other_release = make_release(self.db, other_distribution, "9.0.0")
        mine = self._online("MINE")
        foreign = self._online("FOREIGN", release=other_release, target=other_release)
        self.db.commit()

        with self.assertRaises(MixedDistributionError):
            select_canary_devices(self.directory, self.new, by_devices([mine.id, foreign.id]))
        with self.assertRaises(MixedDistributionError) as ctx:
            select_canary_devices(self.directory, self.new, by_devices([foreign.id]))
        self.assertEqual(ctx.exception.expected, self.distribution.id)


if __name__ == "__main__":
    unittest.main()
