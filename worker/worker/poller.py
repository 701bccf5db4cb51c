"""Read-only poller over in-progress deployments.

Each pass reconciles every canary device against one ``now`` and logs the
status counts. When a deployment's confirmation gate opens, the poller logs
that once; it never confirms a rollout on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import os
from pathlib import Path
import sys
from typing import Callable

REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_PATH = Path(os.getenv("WORKER_BACKEND_PATH", str(REPO_ROOT / "backend"))).resolve()
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

from sqlalchemy.orm import Session  # noqa: E402

from app.db.session import SessionLocal  # noqa: E402
from app.domain.deployment_state_machine import DeploymentStatus  # noqa: E402
from app.domain.device_status import summarize_statuses  # noqa: E402
from app.domain.errors import RolloutError  # noqa: E402
from app.models import Deployment  # noqa: E402
from app.models.common import utcnow  # noqa: E402
from app.services.confirmation_gate import evaluate_gate  # noqa: E402
from app.services.device_directory import DeviceDirectory  # noqa: E402
from app.services.device_reconciler import reconcile_deployment_devices  # noqa: E402
from app.services.observability import emit_structured_log, trace_context  # noqa: E402

COMPONENT = "worker"


@dataclass(frozen=True)
class DeploymentSnapshot:
    deployment_id: int
    release_id: int
    device_status_counts: dict[str, int]
    can_confirm: bool
    pending_device_ids: list[int] = field(default_factory=list)


class RolloutStatusPoller:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        liveness_window: timedelta | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.liveness_window = liveness_window
        self._gate_open: dict[int, bool] = {}

    def _snapshot(self, db: Session, deployment: Deployment, now: datetime) -> DeploymentSnapshot:
        directory = DeviceDirectory(db, liveness_window=self.liveness_window)
        devices = reconcile_deployment_devices(db, deployment, directory=directory, now=now)
        gate = evaluate_gate(db, deployment, directory=directory)
        return DeploymentSnapshot(
            deployment_id=deployment.id,
            release_id=deployment.release_id,
            device_status_counts=summarize_statuses(device.status for device in devices),
            can_confirm=gate.open,
            pending_device_ids=gate.pending_device_ids,
        )

    def poll_once(self, now: datetime | None = None) -> list[DeploymentSnapshot]:
        now = now or utcnow()
        snapshots: list[DeploymentSnapshot] = []

        with trace_context():
            db = self.session_factory()
            try:
                deployments = (
                    db.query(Deployment)
                    .filter(Deployment.status == DeploymentStatus.IN_PROGRESS.value)
                    .order_by(Deployment.id.asc())
                    .all()
                )
                for deployment in deployments:
                    try:
                        snapshot = self._snapshot(db, deployment, now)
                    except RolloutError as exc:
                        # A failed read leaves the transaction aborted on PostgreSQL.
                        db.rollback()
                        emit_structured_log(
                            component=COMPONENT,
                            event="deployment_poll_failed",
                            level=logging.WARNING,
                            release_id=deployment.release_id,
                            deployment_id=deployment.id,
                            error=exc.code,
                            detail=exc.message,
                        )
                        continue
                    snapshots.append(snapshot)
                    self._report(snapshot)
            finally:
                db.close()

        active_ids = {snapshot.deployment_id for snapshot in snapshots}
        for deployment_id in list(self._gate_open):
            if deployment_id not in active_ids:
                del self._gate_open[deployment_id]
        return snapshots

    def _report(self, snapshot: DeploymentSnapshot) -> None:
        emit_structured_log(
            component=COMPONENT,
            event="deployment_status_polled",
            release_id=snapshot.release_id,
            deployment_id=snapshot.deployment_id,
            device_status_counts=snapshot.device_status_counts,
            can_confirm=snapshot.can_confirm,
            pending_device_ids=snapshot.pending_device_ids,
        )
        was_open = self._gate_open.get(snapshot.deployment_id, False)
        if snapshot.can_confirm and not was_open:
            emit_structured_log(
                component=COMPONENT,
                event="canary_ready_for_confirmation",
                release_id=snapshot.release_id,
                deployment_id=snapshot.deployment_id,
            )
        self._gate_open[snapshot.deployment_id] = snapshot.can_confirm
