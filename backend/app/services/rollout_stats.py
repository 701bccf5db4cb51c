from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models import Device, Distribution, Release


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_stats(distribution_id: int) -> dict[str, object]:
    return {
        "distribution_id": distribution_id,
        "total_devices": 0,
        "updated_devices": 0,
        "pending_devices": 0,
    }


def _stats_query(db: Session):
    converged = case((Device.release_id == Device.target_release_id, 1), else_=0)
    return (
        db.query(
            Release.distribution_id,
            func.count(Device.id),
            func.coalesce(func.sum(converged), 0),
        )
        .join(Release, Device.target_release_id == Release.id)
        .filter(Device.target_release_id.is_not(None))
        .group_by(Release.distribution_id)
    )


def _to_stats(row) -> dict[str, object]:
    distribution_id, total, updated = row
    total = int(total or 0)
    updated = int(updated or 0)
    return {
        "distribution_id": distribution_id,
        "total_devices": total,
        "updated_devices": updated,
        "pending_devices": total - updated,
    }


def collect_distribution_rollout_stats(db: Session, distribution_id: int) -> dict[str, object]:
    """Counts devices targeting any release of the distribution."""
    row = _stats_query(db).filter(Release.distribution_id == distribution_id).first()
    stats = _to_stats(row) if row is not None else _empty_stats(distribution_id)
    stats["observed_at"] = _utcnow_iso()
    return stats


def collect_all_rollout_stats(db: Session) -> list[dict[str, object]]:
    by_distribution = {row[0]: _to_stats(row) for row in _stats_query(db).all()}
    distribution_ids = [row[0] for row in db.query(Distribution.id).order_by(Distribution.id.asc()).all()]
    observed_at = _utcnow_iso()
    results = []
    for distribution_id in distribution_ids:
        stats = by_distribution.get(distribution_id) or _empty_stats(distribution_id)
        stats["observed_at"] = observed_at
        results.append(stats)
    return results
