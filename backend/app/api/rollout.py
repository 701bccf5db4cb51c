from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.session import get_db_session
from app.models import Distribution
from app.services.rollout_stats import collect_all_rollout_stats, collect_distribution_rollout_stats

router = APIRouter(prefix="/api/distributions", tags=["rollout"])


@router.get("/rollout")
def get_distributions_rollout(db: Session = Depends(get_db_session)) -> list[dict[str, object]]:
    return collect_all_rollout_stats(db)


@router.get("/{distribution_id}/rollout")
def get_distribution_rollout(distribution_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    if db.get(Distribution, distribution_id) is None:
        raise HTTPException(status_code=404, detail="Distribution not found")
    return collect_distribution_rollout_stats(db, distribution_id)
