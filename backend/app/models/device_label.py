from __future__ import annotations

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class DeviceLabel(Base):
    __tablename__ = "device_labels"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(ForeignKey("devices.id"), index=True)
    name: Mapped[str] = mapped_column(String(128), index=True)
    value: Mapped[str] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint("device_id", "name", name="uq_device_labels_device_name"),
    )
