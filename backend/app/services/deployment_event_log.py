from __future__ import annotations

import hashlib
import json
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditLog, DeploymentEvent
from app.services.observability import current_trace_id

EVENT_SCHEMA_VERSION = 1


def normalize_event_payload(payload: dict[str, Any] | None) -> dict[str, Any]:
    value = dict(payload or {})
    schema_version = value.get("schema_version")
    if not isinstance(schema_version, int) or schema_version <= 0:
        value["schema_version"] = EVENT_SCHEMA_VERSION
    trace_id = current_trace_id()
    if trace_id:
        value.setdefault("trace_id", trace_id)
    return value


def _payload_hash(payload: dict[str, Any]) -> str:
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def append_audit_log(
    db: Session,
    *,
    action: str,
    payload: dict[str, Any],
    actor_id: str | None = None,
) -> AuditLog:
    row = AuditLog(
        actor_id=actor_id,
        action=action,
        payload_hash=_payload_hash(payload),
        payload_json=json.loads(json.dumps(payload, default=str)),
    )
    db.add(row)
    return row


def append_deployment_event(
    db: Session,
    *,
    deployment_id: int,
    event_type: str,
    status_from: str | None = None,
    status_to: str | None = None,
    payload: dict[str, Any] | None = None,
    actor_id: str | None = None,
    audit_action: str | None = None,
) -> DeploymentEvent:
    normalized_payload = normalize_event_payload(payload)
    row = DeploymentEvent(
        deployment_id=deployment_id,
        event_type=event_type,
        status_from=status_from,
        status_to=status_to,
        payload=json.loads(json.dumps(normalized_payload, default=str)),
    )
    db.add(row)

    if audit_action:
        append_audit_log(
            db,
            action=audit_action,
            payload={
                "schema_version": normalized_payload["schema_version"],
                "deployment_id": deployment_id,
                "event_type": event_type,
                "status_from": status_from,
                "status_to": status_to,
                "payload": normalized_payload,
            },
            actor_id=actor_id,
        )

    return row
