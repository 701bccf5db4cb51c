from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class DeploymentDevice(Base):
    """Canary membership row, snapshotted when the deployment is created."""

    __tablename__ = "deployment_devices"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(ForeignKey("deployments.id"), index=True)
    device_id: Mapped[int] = mapped_column(ForeignKey("devices.id"), index=True)
    serial_number: Mapped[str] = mapped_column(String(128))
    release_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_release_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_ping: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("deployment_id", "device_id", name="uq_deployment_devices_deployment_device"),
    )
