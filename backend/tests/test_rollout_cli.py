from __future__ import annotations

import io
import json
import os
from contextlib import redirect_stdout
from pathlib import Path
import sys
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

BACKEND_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for path in (BACKEND_ROOT, TESTS_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.db.base import Base
from app.db.seed import SEED_DISTRIBUTION_NAME, seed_local_data
from app.models import Device, Distribution, Release
from app.services import rollout_cli


class RolloutCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        seed_local_data(self.session_factory)

        with self.session_factory() as db:
            distribution = db.query(Distribution).filter(Distribution.name == SEED_DISTRIBUTION_NAME).one()
            releases = (
                db.query(Release)
                .filter(Release.distribution_id == distribution.id)
                .order_by(Release.id.asc())
                .all()
            )
            self.current_id = releases[0].id
            self.candidate_id = releases[1].id

        patcher = patch.object(rollout_cli, "SessionLocal", self.session_factory)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _run(self, *argv: str) -> tuple[int, object]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            exit_code = rollout_cli.main(list(argv))
        return exit_code, json.loads(buffer.getvalue())

    def test_seed_is_idempotent(self) -> None:
        seed_local_data(self.session_factory)
        with self.session_factory() as db:
            self.assertEqual(db.query(Distribution).count(), 1)
            self.assertEqual(db.query(Device).count(), 6)

    def test_create_with_labels_and_read_status(self) -> None:
        code, created = self._run(
            "create",
            "--release-id",
            str(self.candidate_id),
            "--label",
            "ring=canary",
            "--actor-id",
            "cli-operator",
        )
        self.assertEqual(code, 0)
        self.assertEqual(created["status"], "in_progress")
        self.assertEqual(len(created["canary_device_ids"]), 2)

        code, status = self._run("status", "--release-id", str(self.candidate_id))
        self.assertEqual(code, 0)
        self.assertFalse(status["can_confirm"])
        self.assertEqual(sorted(status["pending_device_ids"]), sorted(created["canary_device_ids"]))

        code, devices = self._run("devices", "--release-id", str(self.candidate_id))
        self.assertEqual(code, 0)
        self.assertEqual({item["status"] for item in devices}, {"updating"})

    def test_automatic_create_honours_limit(self) -> None:
        code, created = self._run("create", "--release-id", str(self.candidate_id), "--limit", "3")
        self.assertEqual(code, 0)
        self.assertEqual(len(created["canary_device_ids"]), 3)

    def test_user_errors_exit_with_code_two(self) -> None:
        code, payload = self._run("confirm", "--release-id", str(self.candidate_id))
        self.assertEqual(code, 2)
        self.assertEqual(payload["error"], "deployment_not_found")

        self._run("yank", "--release-id", str(self.candidate_id))
        code, payload = self._run("create", "--release-id", str(self.candidate_id))
        self.assertEqual(code, 2)
        self.assertEqual(payload["error"], "release_not_deployable")

    def test_cancel_and_fail(self) -> None:
        self._run("create", "--release-id", str(self.candidate_id), "--label", "ring=canary")
        code, canceled = self._run("cancel", "--release-id", str(self.candidate_id), "--reason", "rollback")
        self.assertEqual(code, 0)
        self.assertEqual(canceled["status"], "canceled")

        self._run("create", "--release-id", str(self.candidate_id))
        code, failed = self._run("fail", "--release-id", str(self.candidate_id), "--reason", "mirror down")
        self.assertEqual(code, 0)
        self.assertEqual(failed["status"], "failed")


if __name__ == "__main__":
    unittest.main()
