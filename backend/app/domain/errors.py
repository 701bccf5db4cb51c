from __future__ import annotations

from collections.abc import Iterable


class RolloutError(ValueError):
    """Base class for operator-facing rollout errors.

    Every subclass carries a stable ``code`` and the HTTP status the API layer
    answers with. Messages are surfaced to the operator verbatim.
    """

    code = "rollout_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.code
        super().__init__(self.message)

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


def _format_ids(values: Iterable[int]) -> str:
    return ",".join(str(value) for value in sorted(values))


class SelectionError(RolloutError):
    code = "invalid_selection"
    status_code = 400


class InvalidSelectionError(SelectionError):
    code = "invalid_selection"


class InvalidLabelFilterError(SelectionError):
    code = "invalid_label_filter"


class EmptySelectionError(SelectionError):
    code = "empty_selection"


class NoDistributionError(SelectionError):
    code = "no_distribution"

    def __init__(self, device_ids: Iterable[int]) -> None:
        self.device_ids = sorted(device_ids)
        super().__init__(f"devices_without_current_release:[{_format_ids(self.device_ids)}]")


class MixedDistributionError(SelectionError):
    code = "mixed_distribution"

    def __init__(self, distribution_ids: Iterable[int], *, expected: int | None = None) -> None:
        self.distribution_ids = sorted(distribution_ids)
        self.expected = expected
        message = f"canary_devices_span_distributions:[{_format_ids(self.distribution_ids)}]"
        if expected is not None:
            message = f"{message} release_distribution:{expected}"
        super().__init__(message)


class UnknownDeviceError(SelectionError):
    code = "unknown_device"

    def __init__(self, device_ids: Iterable[int]) -> None:
        self.device_ids = sorted(device_ids)
        super().__init__(f"unknown_device_ids:[{_format_ids(self.device_ids)}]")


class ReleaseNotDeployableError(RolloutError):
    code = "release_not_deployable"
    status_code = 409

    def __init__(self, release_id: int, reason: str) -> None:
        self.release_id = release_id
        self.reason = reason
        super().__init__(f"release_{reason}:{release_id}")


class DuplicateDeploymentError(RolloutError):
    code = "duplicate_deployment"
    status_code = 409

    def __init__(self, release_id: int, deployment_id: int | None = None) -> None:
        self.release_id = release_id
        self.deployment_id = deployment_id
        super().__init__(f"deployment_in_progress_for_release:{release_id}")


class CanaryIncompleteError(RolloutError):
    code = "canary_incomplete"
    status_code = 409

    def __init__(self, pending_device_ids: Iterable[int]) -> None:
        self.pending_device_ids = sorted(pending_device_ids)
        super().__init__(f"canary_devices_not_converged:[{_format_ids(self.pending_device_ids)}]")


class InvalidStateTransitionError(RolloutError):
    code = "invalid_state_transition"
    status_code = 409


class ReleaseFlagChangeError(RolloutError):
    code = "release_flag_change_rejected"
    status_code = 409


class ReleaseNotFoundError(RolloutError):
    code = "release_not_found"
    status_code = 404


class DeploymentNotFoundError(RolloutError):
    code = "deployment_not_found"
    status_code = 404


class DeviceNotFoundError(RolloutError):
    code = "device_not_found"
    status_code = 404


class DeviceDirectoryUnavailableError(RolloutError):
    """Transient read/write failure against the device directory."""

    code = "device_directory_unavailable"
    status_code = 503
