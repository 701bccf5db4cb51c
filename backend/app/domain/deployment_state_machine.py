from __future__ import annotations

from enum import Enum

from app.domain.errors import InvalidStateTransitionError


class DeploymentStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATES = {
    DeploymentStatus.DONE,
    DeploymentStatus.FAILED,
    DeploymentStatus.CANCELED,
}

# Done is only reachable through the full-rollout confirmation; Failed only
# through an external report.
VALID_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.IN_PROGRESS: {DeploymentStatus.DONE, DeploymentStatus.CANCELED, DeploymentStatus.FAILED},
    DeploymentStatus.DONE: set(),
    DeploymentStatus.FAILED: set(),
    DeploymentStatus.CANCELED: set(),
}


def ensure_transition_allowed(current: DeploymentStatus, target: DeploymentStatus) -> None:
    if current in TERMINAL_STATES:
        raise InvalidStateTransitionError(f"Cannot transition terminal deployment state '{current.value}'.")

    allowed_targets = VALID_TRANSITIONS[current]
    if target not in allowed_targets:
        allowed_text = ", ".join(sorted(state.value for state in allowed_targets))
        raise InvalidStateTransitionError(
            f"Invalid transition '{current.value}' -> '{target.value}'. Allowed: [{allowed_text}]"
        )


def is_terminal(status: DeploymentStatus | str) -> bool:
    return DeploymentStatus(status) in TERMINAL_STATES


def list_deployment_states() -> list[str]:
    return [state.value for state in DeploymentStatus]
