from __future__ import annotations

import argparse
import json

from app.db.session import SessionLocal
from app.domain.canary_selection import selection_from_request
from app.domain.errors import RolloutError
from app.services.device_reconciler import reconcile_deployment_devices
from app.services.release_registry import update_release_flags
from app.services.rollout_controller import (
    cancel_deployment,
    confirm_full_rollout,
    create_deployment,
    describe_deployment,
    get_current_deployment,
    mark_deployment_failed,
    require_current_deployment,
)


def _deployment_payload(item) -> dict[str, str | int | None]:
    return {
        "id": item.id,
        "release_id": item.release_id,
        "status": item.status,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def _device_payload(item) -> dict[str, object]:
    return {
        "device_id": item.device_id,
        "serial_number": item.serial_number,
        "release_id": item.release_id,
        "target_release_id": item.target_release_id,
        "last_ping": item.last_ping.isoformat() if item.last_ping else None,
        "status": item.status.value,
        "services_healthy": item.services_healthy,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive staged release rollouts from the control-plane DB")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create")
    create_parser.add_argument("--release-id", type=int, required=True)
    selection_group = create_parser.add_mutually_exclusive_group()
    selection_group.add_argument("--label", action="append", dest="labels", default=None, help="key=value")
    selection_group.add_argument("--device-id", action="append", dest="device_ids", type=int, default=None)
    create_parser.add_argument("--limit", type=int, default=None, help="automatic canary size")
    create_parser.add_argument("--actor-id", default=None)

    for name in ("status", "devices"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--release-id", type=int, required=True)

    for name in ("confirm", "cancel"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--release-id", type=int, required=True)
        sub.add_argument("--actor-id", default=None)
        sub.add_argument("--reason", default=None)

    fail_parser = subparsers.add_parser("fail")
    fail_parser.add_argument("--release-id", type=int, required=True)
    fail_parser.add_argument("--reason", required=True)
    fail_parser.add_argument("--actor-id", default=None)

    for name in ("publish", "yank"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--release-id", type=int, required=True)
        sub.add_argument("--actor-id", default=None)

    return parser


def run_command(args: argparse.Namespace, db) -> dict | list:
    if args.command == "create":
        selection = selection_from_request(canary_device_labels=args.labels, canary_device_ids=args.device_ids)
        created = create_deployment(
            db=db,
            release_id=args.release_id,
            selection=selection,
            actor_id=args.actor_id,
            automatic_limit=args.limit,
        )
        payload = _deployment_payload(created.deployment)
        payload["canary_device_ids"] = [row.device_id for row in created.devices]
        return payload

    if args.command == "status":
        overview = describe_deployment(db, require_current_deployment(db, args.release_id))
        payload = _deployment_payload(overview.deployment)
        payload["can_confirm"] = overview.can_confirm
        payload["pending_device_ids"] = overview.gate.pending_device_ids
        payload["device_status_counts"] = overview.device_status_counts
        return payload

    if args.command == "devices":
        deployment = get_current_deployment(db, args.release_id)
        if deployment is None:
            return []
        return [_device_payload(item) for item in reconcile_deployment_devices(db, deployment)]

    if args.command == "confirm":
        result = confirm_full_rollout(db=db, release_id=args.release_id, actor_id=args.actor_id)
        payload = _deployment_payload(result.deployment)
        payload["rolled_out_device_count"] = result.rolled_out_device_count
        return payload

    if args.command == "cancel":
        deployment = cancel_deployment(db=db, release_id=args.release_id, actor_id=args.actor_id, reason=args.reason)
        return _deployment_payload(deployment)

    if args.command == "fail":
        deployment = mark_deployment_failed(
            db=db,
            release_id=args.release_id,
            reason=args.reason,
            actor_id=args.actor_id,
        )
        return _deployment_payload(deployment)

    if args.command in {"publish", "yank"}:
        flags = {"draft": False} if args.command == "publish" else {"yanked": True}
        release = update_release_flags(db=db, release_id=args.release_id, actor_id=args.actor_id, **flags)
        return {"id": release.id, "version": release.version, "draft": release.draft, "yanked": release.yanked}

    return {"error": "unsupported_command"}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    db = SessionLocal()
    try:
        try:
            result = run_command(args, db)
        except RolloutError as exc:
            print(json.dumps({"error": exc.code, "detail": exc.message}))
            return 2
        print(json.dumps(result, default=str))
        if isinstance(result, dict) and result.get("error") == "unsupported_command":
            return 1
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
