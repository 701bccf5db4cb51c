"""Deployment lifecycle for a release: canary, confirmation, cancel, failure.

Every mutating operation locks the release row first, so create, confirm,
cancel and mark-failed serialize per release. A transition is committed in the
same transaction as its device writes; on any error the transaction is rolled
back and nothing is recorded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain.canary_selection import CanarySelection, describe_selection
from app.domain.deployment_state_machine import DeploymentStatus, ensure_transition_allowed
from app.domain.device_status import summarize_statuses
from app.domain.errors import (
    CanaryIncompleteError,
    DeploymentNotFoundError,
    DuplicateDeploymentError,
    ReleaseNotDeployableError,
    ReleaseNotFoundError,
)
from app.models import Deployment, DeploymentDevice, Release
from app.services.canary_selector import select_canary_devices
from app.services.confirmation_gate import GateDecision, ensure_gate_open, evaluate_gate
from app.services.deployment_event_log import append_deployment_event
from app.services.device_directory import DeviceDirectory
from app.services.device_reconciler import list_canary_rows, reconcile_deployment_devices
from app.services.observability import emit_structured_log

COMPONENT = "rollout.controller"


@dataclass(frozen=True)
class DeploymentCreated:
    deployment: Deployment
    devices: list[DeploymentDevice]


@dataclass(frozen=True)
class FullRolloutResult:
    deployment: Deployment
    canary_device_count: int
    rolled_out_device_count: int


@dataclass(frozen=True)
class DeploymentOverview:
    deployment: Deployment
    gate: GateDecision
    device_status_counts: dict[str, int] = field(default_factory=dict)

    @property
    def can_confirm(self) -> bool:
        return self.gate.open


def get_release(db: Session, release_id: int, *, lock: bool = False) -> Release:
    query = db.query(Release).filter(Release.id == release_id)
    if lock:
        query = query.with_for_update()
    release = query.first()
    if release is None:
        raise ReleaseNotFoundError(f"release_not_found:{release_id}")
    return release


def get_current_deployment(db: Session, release_id: int, *, lock: bool = False) -> Deployment | None:
    query = db.query(Deployment).filter(Deployment.release_id == release_id)
    if lock:
        query = query.with_for_update()
    return query.order_by(Deployment.id.desc()).first()


def require_current_deployment(db: Session, release_id: int, *, lock: bool = False) -> Deployment:
    deployment = get_current_deployment(db, release_id, lock=lock)
    if deployment is None:
        raise DeploymentNotFoundError(f"deployment_not_found_for_release:{release_id}")
    return deployment


def _ensure_deployable(release: Release) -> None:
    if release.yanked:
        raise ReleaseNotDeployableError(release.id, "yanked")
    if release.draft:
        raise ReleaseNotDeployableError(release.id, "draft")


def _transition(deployment: Deployment, target: DeploymentStatus) -> tuple[str, str]:
    current_state = DeploymentStatus(deployment.status)
    ensure_transition_allowed(current_state, target)
    deployment.status = target.value
    return current_state.value, target.value


def create_deployment(
    *,
    db: Session,
    release_id: int,
    selection: CanarySelection,
    actor_id: str | None = None,
    directory: DeviceDirectory | None = None,
    automatic_limit: int | None = None,
) -> DeploymentCreated:
    directory = directory or DeviceDirectory(db)
    try:
        release = get_release(db, release_id, lock=True)
        _ensure_deployable(release)

        active = (
            db.query(Deployment)
            .filter(
                Deployment.release_id == release.id,
                Deployment.status == DeploymentStatus.IN_PROGRESS.value,
            )
            .first()
        )
        if active is not None:
            raise DuplicateDeploymentError(release.id, active.id)

        canary = select_canary_devices(directory, release, selection, automatic_limit=automatic_limit)
        canary_ids = [device.id for device in canary]

        deployment = Deployment(release_id=release.id, status=DeploymentStatus.IN_PROGRESS.value)
        db.add(deployment)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateDeploymentError(release.id) from exc

        directory.set_target_release(canary_ids, release.id)

        rows = [
            DeploymentDevice(
                deployment_id=deployment.id,
                device_id=device.id,
                serial_number=device.serial_number,
                release_id=device.release_id,
                target_release_id=device.target_release_id,
                last_ping=device.last_ping,
            )
            for device in directory.get_devices(canary_ids)
        ]
        db.add_all(rows)

        append_deployment_event(
            db,
            deployment_id=deployment.id,
            event_type="deployment_created",
            status_to=deployment.status,
            payload={
                "release_id": release.id,
                "selection": describe_selection(selection),
                "canary_device_ids": canary_ids,
            },
            actor_id=actor_id,
            audit_action="deployment.canary.created",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(deployment)
    for row in rows:
        db.refresh(row)
    emit_structured_log(
        component=COMPONENT,
        event="deployment_created",
        release_id=release_id,
        deployment_id=deployment.id,
        actor_id=actor_id,
        canary_size=len(rows),
        **describe_selection(selection),
    )
    return DeploymentCreated(deployment=deployment, devices=rows)


def confirm_full_rollout(
    *,
    db: Session,
    release_id: int,
    actor_id: str | None = None,
    directory: DeviceDirectory | None = None,
) -> FullRolloutResult:
    """Open the release to the whole distribution once every canary converged.

    Writes the target release onto every device of the distribution outside
    the canary set, including devices that joined after canary selection.
    """
    directory = directory or DeviceDirectory(db)
    try:
        release = get_release(db, release_id, lock=True)
        deployment = require_current_deployment(db, release.id, lock=True)
        ensure_transition_allowed(DeploymentStatus(deployment.status), DeploymentStatus.DONE)

        try:
            decision = ensure_gate_open(db, deployment, directory=directory)
        except CanaryIncompleteError as exc:
            emit_structured_log(
                component=COMPONENT,
                event="deployment_gate_closed",
                level=logging.WARNING,
                release_id=release.id,
                deployment_id=deployment.id,
                actor_id=actor_id,
                pending_device_ids=exc.pending_device_ids,
            )
            raise

        canary_ids = [row.device_id for row in list_canary_rows(db, deployment.id)]
        rolled_out = directory.set_target_release_for_distribution(
            release.distribution_id,
            release.id,
            exclude_device_ids=canary_ids,
        )

        status_from, status_to = _transition(deployment, DeploymentStatus.DONE)
        append_deployment_event(
            db,
            deployment_id=deployment.id,
            event_type="status_transition",
            status_from=status_from,
            status_to=status_to,
            payload={
                "source": "confirm_full_rollout",
                "distribution_id": release.distribution_id,
                "canary_device_count": decision.canary_size,
                "rolled_out_device_count": rolled_out,
            },
            actor_id=actor_id,
            audit_action="deployment.full_rollout.confirmed",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(deployment)
    emit_structured_log(
        component=COMPONENT,
        event="deployment_full_rollout_confirmed",
        release_id=release_id,
        deployment_id=deployment.id,
        actor_id=actor_id,
        rolled_out_device_count=rolled_out,
    )
    return FullRolloutResult(
        deployment=deployment,
        canary_device_count=decision.canary_size,
        rolled_out_device_count=rolled_out,
    )


def _close_deployment(
    *,
    db: Session,
    release_id: int,
    target: DeploymentStatus,
    source: str,
    audit_action: str,
    log_event: str,
    actor_id: str | None,
    reason: str | None,
) -> Deployment:
    try:
        release = get_release(db, release_id, lock=True)
        deployment = require_current_deployment(db, release.id, lock=True)
        status_from, status_to = _transition(deployment, target)
        append_deployment_event(
            db,
            deployment_id=deployment.id,
            event_type="status_transition",
            status_from=status_from,
            status_to=status_to,
            payload={"source": source, "reason": reason},
            actor_id=actor_id,
            audit_action=audit_action,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(deployment)
    emit_structured_log(
        component=COMPONENT,
        event=log_event,
        level=logging.WARNING if target == DeploymentStatus.FAILED else logging.INFO,
        release_id=release_id,
        deployment_id=deployment.id,
        actor_id=actor_id,
        reason=reason,
    )
    return deployment


def cancel_deployment(
    *,
    db: Session,
    release_id: int,
    actor_id: str | None = None,
    reason: str | None = None,
) -> Deployment:
    # Target-release writes already made stay in place.
    return _close_deployment(
        db=db,
        release_id=release_id,
        target=DeploymentStatus.CANCELED,
        source="cancel",
        audit_action="deployment.canceled",
        log_event="deployment_canceled",
        actor_id=actor_id,
        reason=reason,
    )


def mark_deployment_failed(
    *,
    db: Session,
    release_id: int,
    reason: str,
    actor_id: str | None = None,
) -> Deployment:
    """Record a hard infrastructure error reported by an external actor."""
    return _close_deployment(
        db=db,
        release_id=release_id,
        target=DeploymentStatus.FAILED,
        source="external_failure_report",
        audit_action="deployment.failed",
        log_event="deployment_marked_failed",
        actor_id=actor_id,
        reason=reason,
    )


def describe_deployment(
    db: Session,
    deployment: Deployment,
    *,
    directory: DeviceDirectory | None = None,
) -> DeploymentOverview:
    directory = directory or DeviceDirectory(db)
    devices = reconcile_deployment_devices(db, deployment, directory=directory)
    return DeploymentOverview(
        deployment=deployment,
        gate=evaluate_gate(db, deployment, directory=directory),
        device_status_counts=summarize_statuses(device.status for device in devices),
    )
