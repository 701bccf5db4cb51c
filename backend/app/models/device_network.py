from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class DeviceNetwork(Base):
    __tablename__ = "device_networks"

    device_id: Mapped[int] = mapped_column(ForeignKey("devices.id"), primary_key=True)
    network_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(64), default="speed_test")
    download_speed_mbps: Mapped[float | None] = mapped_column(Float, nullable=True)
    upload_speed_mbps: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("network_score >= 1 AND network_score <= 5", name="ck_device_networks_score_range"),
    )
