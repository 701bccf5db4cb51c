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
from app.domain.errors import ReleaseFlagChangeError, ReleaseNotFoundError
from app.models import AuditLog
from app.services.release_registry import latest_published_release, list_releases, update_release_flags
from app.services.rollout_stats import collect_all_rollout_stats, collect_distribution_rollout_stats
from fleet_fixtures import make_device, make_distribution, make_release, minutes_ago


class ReleaseRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.db = self.session_factory()
        self.distribution = make_distribution(self.db)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_publish_is_audited_and_cannot_be_undone(self) -> None:
        release = make_release(self.db, self.distribution, "1.0.0", draft=True)
        self.db.commit()

        published = update_release_flags(db=self.db, release_id=release.id, draft=False, actor_id="release-bot")

        self.assertFalse(published.draft)
        audit = self.db.query(AuditLog).filter(AuditLog.action == "release.flags.updated").one()
        self.assertEqual(audit.actor_id, "release-bot")
        self.assertEqual(audit.payload_json["changes"], {"draft": {"from": True, "to": False}})
        with self.assertRaises(ReleaseFlagChangeError):
            update_release_flags(db=self.db, release_id=release.id, draft=True)

    def test_yank_is_terminal(self) -> None:
        release = make_release(self.db, self.distribution, "1.0.0")
        self.db.commit()

        self.assertTrue(update_release_flags(db=self.db, release_id=release.id, yanked=True).yanked)
        with self.assertRaises(ReleaseFlagChangeError):
            update_release_flags(db=self.db, release_id=release.id, yanked=False)

    def test_noop_update_writes_no_audit_row(self) -> None:
        release = make_release(self.db, self.distribution, "1.0.0")
        self.db.commit()

        update_release_flags(db=self.db, release_id=release.id, draft=False, yanked=False)

        self.assertEqual(self.db.query(AuditLog).count(), 0)

    def test_unknown_release(self) -> None:
        with self.assertRaises(ReleaseNotFoundError):
            update_release_flags(db=self.db, release_id=404, yanked=True)

    def test_listing_and_latest_published(self) -> None:
        first = make_release(self.db, self.distribution, "1.0.0")
        second = make_release(self.db, self.distribution, "1.1.0", yanked=True)
        make_release(self.db, self.distribution, "1.2.0", draft=True)
        other = make_distribution(self.db, "other-os")
        make_release(self.db, other, "9.0.0")
        self.db.commit()

        versions = [item.version for item in list_releases(db=self.db, distribution_id=self.distribution.id)]
        self.assertEqual(versions, ["1.2.0", "1.1.0", "1.0.0"])
        visible = list_releases(db=self.db, distribution_id=self.distribution.id, include_yanked=False)
        self.assertNotIn(second.id, [item.id for item in visible])
        self.assertEqual(latest_published_release(db=self.db, distribution_id=self.distribution.id).id, first.id)


class RolloutStatsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.db = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_counts_devices_by_target_distribution(self) -> None:
        distribution = make_distribution(self.db)
        old = make_release(self.db, distribution, "1.0.0")
        new = make_release(self.db, distribution, "1.1.0")
        make_device(self.db, "UPDATED", release=new, target=new, last_ping=minutes_ago(1))
        make_device(self.db, "BEHIND", release=old, target=new, last_ping=minutes_ago(1))
        make_device(self.db, "STEADY", release=old, target=old)
        make_device(self.db, "UNASSIGNED", release=old)
        empty = make_distribution(self.db, "empty-os")
        self.db.commit()

        stats = collect_distribution_rollout_stats(self.db, distribution.id)
        self.assertEqual(
            (stats["total_devices"], stats["updated_devices"], stats["pending_devices"]),
            (3, 2, 1),
        )
        self.assertIn("observed_at", stats)

        listing = collect_all_rollout_stats(self.db)
        self.assertEqual([item["distribution_id"] for item in listing], [distribution.id, empty.id])
        self.assertEqual(listing[1]["total_devices"], 0)


if __name__ == "__main__":
    unittest.main()
