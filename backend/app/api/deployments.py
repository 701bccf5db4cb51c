from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.errors import http_error
from app.db.session import get_db_session
from app.domain.canary_selection import LabelFilter, selection_from_request
from app.domain.errors import RolloutError
from app.models import Deployment
from app.services.device_reconciler import ReconciledDevice, reconcile_deployment_devices
from app.services.rollout_controller import (
    cancel_deployment,
    confirm_full_rollout,
    create_deployment,
    describe_deployment,
    get_current_deployment,
    get_release,
    mark_deployment_failed,
    require_current_deployment,
)

router = APIRouter(prefix="/api/releases", tags=["deployments"])


class LabelFilterPayload(BaseModel):
    key: str
    value: str


class CreateDeploymentRequest(BaseModel):
    canary_device_labels: list[LabelFilterPayload | str] | None = None
    canary_device_ids: list[int] | None = None
    actor_id: str | None = None


class DeploymentActionRequest(BaseModel):
    actor_id: str | None = None
    reason: str | None = None


class FailDeploymentRequest(BaseModel):
    reason: str
    actor_id: str | None = None


class DeploymentResponse(BaseModel):
    id: int
    release_id: int
    status: str
    created_at: datetime
    updated_at: datetime


class DeploymentDeviceResponse(BaseModel):
    device_id: int
    serial_number: str
    release_id: int | None
    target_release_id: int | None
    last_ping: datetime | None
    added_at: datetime
    status: str
    services_healthy: bool | None = None
    services_status: Any = None


class DeploymentStatusResponse(DeploymentResponse):
    can_confirm: bool
    canary_size: int
    pending_device_ids: list[int]
    device_status_counts: dict[str, int]


class CreateDeploymentResponse(BaseModel):
    deployment: DeploymentResponse
    devices: list[DeploymentDeviceResponse]


class FullRolloutResponse(BaseModel):
    deployment: DeploymentResponse
    canary_device_count: int
    rolled_out_device_count: int


def _to_deployment_response(deployment: Deployment) -> DeploymentResponse:
    return DeploymentResponse(
        id=deployment.id,
        release_id=deployment.release_id,
        status=deployment.status,
        created_at=deployment.created_at,
        updated_at=deployment.updated_at,
    )


def _to_device_response(device: ReconciledDevice) -> DeploymentDeviceResponse:
    return DeploymentDeviceResponse(
        device_id=device.device_id,
        serial_number=device.serial_number,
        release_id=device.release_id,
        target_release_id=device.target_release_id,
        last_ping=device.last_ping,
        added_at=device.added_at,
        status=device.status.value,
        services_healthy=device.services_healthy,
        services_status=device.services_status,
    )


def _label_filters(items: list[LabelFilterPayload | str] | None) -> list[LabelFilter] | None:
    if items is None:
        return None
    return [
        LabelFilter.parse(item) if isinstance(item, str) else LabelFilter.create(item.key, item.value)
        for item in items
    ]


@router.post("/{release_id}/deployment", response_model=CreateDeploymentResponse)
def post_release_deployment(
    release_id: int,
    payload: CreateDeploymentRequest | None = None,
    db: Session = Depends(get_db_session),
) -> CreateDeploymentResponse:
    payload = payload or CreateDeploymentRequest()
    try:
        selection = selection_from_request(
            canary_device_labels=_label_filters(payload.canary_device_labels),
            canary_device_ids=payload.canary_device_ids,
        )
        created = create_deployment(
            db=db,
            release_id=release_id,
            selection=selection,
            actor_id=payload.actor_id,
        )
        devices = reconcile_deployment_devices(db, created.deployment)
    except RolloutError as exc:
        raise http_error(exc) from exc

    return CreateDeploymentResponse(
        deployment=_to_deployment_response(created.deployment),
        devices=[_to_device_response(device) for device in devices],
    )


@router.get("/{release_id}/deployment", response_model=DeploymentStatusResponse)
def get_release_deployment(release_id: int, db: Session = Depends(get_db_session)) -> DeploymentStatusResponse:
    try:
        get_release(db, release_id)
        deployment = require_current_deployment(db, release_id)
        overview = describe_deployment(db, deployment)
    except RolloutError as exc:
        raise http_error(exc) from exc

    base = _to_deployment_response(deployment)
    return DeploymentStatusResponse(
        **base.model_dump(),
        can_confirm=overview.can_confirm,
        canary_size=sum(overview.device_status_counts.values()),
        pending_device_ids=overview.gate.pending_device_ids,
        device_status_counts=overview.device_status_counts,
    )


@router.get("/{release_id}/deployment/devices", response_model=list[DeploymentDeviceResponse])
def get_release_deployment_devices(
    release_id: int,
    db: Session = Depends(get_db_session),
) -> list[DeploymentDeviceResponse]:
    try:
        get_release(db, release_id)
        deployment = get_current_deployment(db, release_id)
        devices = reconcile_deployment_devices(db, deployment) if deployment is not None else []
    except RolloutError as exc:
        raise http_error(exc) from exc

    return [_to_device_response(device) for device in devices]


@router.post("/{release_id}/deployment/confirm-full-rollout", response_model=FullRolloutResponse)
def post_confirm_full_rollout(
    release_id: int,
    payload: DeploymentActionRequest | None = None,
    db: Session = Depends(get_db_session),
) -> FullRolloutResponse:
    payload = payload or DeploymentActionRequest()
    try:
        result = confirm_full_rollout(db=db, release_id=release_id, actor_id=payload.actor_id)
    except RolloutError as exc:
        raise http_error(exc) from exc

    return FullRolloutResponse(
        deployment=_to_deployment_response(result.deployment),
        canary_device_count=result.canary_device_count,
        rolled_out_device_count=result.rolled_out_device_count,
    )


@router.post("/{release_id}/deployment/cancel", response_model=DeploymentResponse)
def post_cancel_deployment(
    release_id: int,
    payload: DeploymentActionRequest | None = None,
    db: Session = Depends(get_db_session),
) -> DeploymentResponse:
    payload = payload or DeploymentActionRequest()
    try:
        deployment = cancel_deployment(
            db=db,
            release_id=release_id,
            actor_id=payload.actor_id,
            reason=payload.reason,
        )
    except RolloutError as exc:
        raise http_error(exc) from exc
    return _to_deployment_response(deployment)


@router.post("/{release_id}/deployment/fail", response_model=DeploymentResponse)
def post_fail_deployment(
    release_id: int,
    payload: FailDeploymentRequest,
    db: Session = Depends(get_db_session),
) -> DeploymentResponse:
    if not payload.reason.strip():
        raise HTTPException(status_code=422, detail="failure_reason_required")
    try:
        deployment = mark_deployment_failed(
            db=db,
            release_id=release_id,
            reason=payload.reason.strip(),
            actor_id=payload.actor_id,
        )
    except RolloutError as exc:
        raise http_error(exc) from exc
    return _to_deployment_response(deployment)
