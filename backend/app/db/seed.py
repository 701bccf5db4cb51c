from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import sessionmaker

from app.db.session import SessionLocal
from app.models import Device, DeviceLabel, DeviceNetwork, Distribution, Release, ReleaseService
from app.models.common import utcnow
from app.services.deployment_event_log import append_audit_log

SEED_DISTRIBUTION_NAME = "fleet-os-local"


def seed_local_data(session_factory: sessionmaker = SessionLocal) -> None:
    db = session_factory()
    try:
        existing = db.query(Distribution).filter(Distribution.name == SEED_DISTRIBUTION_NAME).first()
        if existing:
            return

        distribution = Distribution(
            name=SEED_DISTRIBUTION_NAME,
            architecture="arm64",
            description="Seed data for local development",
        )
        db.add(distribution)
        db.flush()

        current = Release(distribution_id=distribution.id, version="1.0.0", draft=False)
        candidate = Release(distribution_id=distribution.id, version="1.1.0", draft=False)
        db.add_all([current, candidate])
        db.flush()

        for release in (current, candidate):
            db.add(ReleaseService(release_id=release.id, service_name="agent.service", watchdog_sec=30))

        now = utcnow()
        for index in range(1, 7):
            device = Device(
                serial_number=f"SEED-{index:04d}",
                release_id=current.id,
                target_release_id=current.id,
                # The last two devices are offline.
                last_ping=now - (timedelta(minutes=30) if index > 4 else timedelta(seconds=30)),
                system_info={"services_status": [{"name": "agent.service", "active": True, "healthy": True}]},
            )
            device.labels = [
                DeviceLabel(name="site", value="lab" if index % 2 else "field"),
                DeviceLabel(name="ring", value="canary" if index <= 2 else "general"),
            ]
            device.network = DeviceNetwork(network_score=(index % 5) + 1, source="seed")
            db.add(device)

        append_audit_log(
            db,
            actor_id="seed",
            action="seed.local_data",
            payload={"distribution_id": distribution.id, "release_ids": [current.id, candidate.id]},
        )

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_local_data()
