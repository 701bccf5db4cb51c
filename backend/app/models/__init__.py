"""SQLAlchemy model package for the fleet rollout backend."""

from app.models.audit_log import AuditLog
from app.models.deployment import Deployment
from app.models.deployment_device import DeploymentDevice
from app.models.deployment_event import DeploymentEvent
from app.models.device import Device
from app.models.device_label import DeviceLabel
from app.models.device_network import DeviceNetwork
from app.models.distribution import Distribution
from app.models.release import Release
from app.models.release_service import ReleaseService

__all__ = [
    "AuditLog",
    "Deployment",
    "DeploymentDevice",
    "DeploymentEvent",
    "Device",
    "DeviceLabel",
    "DeviceNetwork",
    "Distribution",
    "Release",
    "ReleaseService",
]
