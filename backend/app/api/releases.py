from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.errors import http_error
from app.db.session import get_db_session
from app.domain.errors import RolloutError
from app.services.release_registry import get_release_by_id, list_releases, update_release_flags

router = APIRouter(prefix="/api/releases", tags=["releases"])


class ReleaseResponse(BaseModel):
    id: int
    distribution_id: int
    version: str
    draft: bool
    yanked: bool
    created_at: datetime


class UpdateReleaseRequest(BaseModel):
    draft: bool | None = None
    yanked: bool | None = None
    actor_id: str | None = None


def _to_release_response(item) -> ReleaseResponse:
    return ReleaseResponse(
        id=item.id,
        distribution_id=item.distribution_id,
        version=item.version,
        draft=item.draft,
        yanked=item.yanked,
        created_at=item.created_at,
    )


@router.get("", response_model=list[ReleaseResponse])
def get_releases(
    limit: int = Query(default=100, ge=1, le=500),
    distribution_id: int | None = Query(default=None),
    include_yanked: bool = Query(default=True),
    db: Session = Depends(get_db_session),
) -> list[ReleaseResponse]:
    records = list_releases(db=db, limit=limit, distribution_id=distribution_id, include_yanked=include_yanked)
    return [_to_release_response(item) for item in records]


@router.get("/{release_id}", response_model=ReleaseResponse)
def get_release(release_id: int, db: Session = Depends(get_db_session)) -> ReleaseResponse:
    record = get_release_by_id(db=db, release_id=release_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Release not found")
    return _to_release_response(record)


@router.patch("/{release_id}", response_model=ReleaseResponse)
def patch_release(
    release_id: int,
    payload: UpdateReleaseRequest,
    db: Session = Depends(get_db_session),
) -> ReleaseResponse:
    try:
        record = update_release_flags(
            db=db,
            release_id=release_id,
            draft=payload.draft,
            yanked=payload.yanked,
            actor_id=payload.actor_id,
        )
    except RolloutError as exc:
        raise http_error(exc) from exc
    return _to_release_response(record)
