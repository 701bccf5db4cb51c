from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.domain.deployment_state_machine import DeploymentStatus
from app.domain.device_status import DeviceConvergence, is_canary_complete, pending_device_ids
from app.domain.errors import CanaryIncompleteError, InvalidStateTransitionError
from app.models import Deployment
from app.services.device_directory import DeviceDirectory
from app.services.device_reconciler import list_canary_rows


@dataclass(frozen=True)
class GateDecision:
    open: bool
    reason: str | None = None
    pending_device_ids: list[int] = field(default_factory=list)
    canary_size: int = 0


def evaluate_gate(
    db: Session,
    deployment: Deployment,
    *,
    directory: DeviceDirectory | None = None,
) -> GateDecision:
    if DeploymentStatus(deployment.status) != DeploymentStatus.IN_PROGRESS:
        return GateDecision(open=False, reason=f"deployment_{deployment.status}")

    directory = directory or DeviceDirectory(db)
    canary_ids = [row.device_id for row in list_canary_rows(db, deployment.id)]
    live = {device.id: device for device in directory.get_devices(canary_ids)}

    convergence = []
    for device_id in canary_ids:
        device = live.get(device_id)
        if device is None:
            # Missing from the directory cannot count as converged.
            convergence.append(
                DeviceConvergence(device_id=device_id, release_id=None, target_release_id=None, last_ping=None)
            )
            continue
        convergence.append(device.convergence())

    if is_canary_complete(convergence):
        return GateDecision(open=True, canary_size=len(canary_ids))
    return GateDecision(
        open=False,
        reason="canary_incomplete",
        pending_device_ids=pending_device_ids(convergence),
        canary_size=len(canary_ids),
    )


def can_confirm(
    db: Session,
    deployment: Deployment,
    *,
    directory: DeviceDirectory | None = None,
) -> bool:
    """Advisory flag for pollers; never used as authorization."""
    return evaluate_gate(db, deployment, directory=directory).open


def ensure_gate_open(
    db: Session,
    deployment: Deployment,
    *,
    directory: DeviceDirectory | None = None,
) -> GateDecision:
    decision = evaluate_gate(db, deployment, directory=directory)
    if decision.open:
        return decision
    if decision.reason == "canary_incomplete":
        raise CanaryIncompleteError(decision.pending_device_ids)
    raise InvalidStateTransitionError(
        f"Cannot confirm full rollout for deployment in state '{deployment.status}'."
    )
