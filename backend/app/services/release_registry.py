from __future__ import annotations

from sqlalchemy.orm import Session

from app.domain.errors import ReleaseFlagChangeError, ReleaseNotFoundError
from app.models import Release
from app.services.deployment_event_log import append_audit_log
from app.services.observability import emit_structured_log


def list_releases(
    *,
    db: Session,
    limit: int = 100,
    distribution_id: int | None = None,
    include_yanked: bool = True,
) -> list[Release]:
    query = db.query(Release)
    if distribution_id is not None:
        query = query.filter(Release.distribution_id == distribution_id)
    if not include_yanked:
        query = query.filter(Release.yanked.is_(False))
    return query.order_by(Release.id.desc()).limit(limit).all()


def get_release_by_id(*, db: Session, release_id: int) -> Release | None:
    return db.query(Release).filter(Release.id == release_id).first()


def latest_published_release(*, db: Session, distribution_id: int) -> Release | None:
    return (
        db.query(Release)
        .filter(
            Release.distribution_id == distribution_id,
            Release.draft.is_(False),
            Release.yanked.is_(False),
        )
        .order_by(Release.created_at.desc(), Release.id.desc())
        .first()
    )


def update_release_flags(
    *,
    db: Session,
    release_id: int,
    draft: bool | None = None,
    yanked: bool | None = None,
    actor_id: str | None = None,
) -> Release:
    """Publish or yank a release.

    Published contents are frozen, so a published release cannot go back to
    draft. Yanking is terminal.
    """
    release = db.query(Release).filter(Release.id == release_id).with_for_update().first()
    if release is None:
        raise ReleaseNotFoundError(f"release_not_found:{release_id}")

    changes: dict[str, dict[str, bool]] = {}
    try:
        if draft is not None and draft != release.draft:
            if draft:
                raise ReleaseFlagChangeError(f"published_release_cannot_return_to_draft:{release.id}")
            changes["draft"] = {"from": release.draft, "to": draft}
            release.draft = draft

        if yanked is not None and yanked != release.yanked:
            if not yanked:
                raise ReleaseFlagChangeError(f"yanked_release_cannot_be_restored:{release.id}")
            changes["yanked"] = {"from": release.yanked, "to": yanked}
            release.yanked = yanked

        if changes:
            append_audit_log(
                db,
                action="release.flags.updated",
                payload={"release_id": release.id, "changes": changes},
                actor_id=actor_id,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(release)
    if changes:
        emit_structured_log(
            component="release.registry",
            event="release_flags_updated",
            release_id=release.id,
            actor_id=actor_id,
            changes=changes,
        )
    return release
