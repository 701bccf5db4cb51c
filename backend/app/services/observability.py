"""One-line JSON logs shared by the API and the rollout poller.

A trace id is bound per request (or per poll pass) with ``trace_context`` and
is picked up by every log line and deployment event written inside it.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import json
import logging
from typing import Iterator
import uuid

TRACE_ID_MAX_LENGTH = 128

_current_trace: ContextVar[str | None] = ContextVar("rollout_trace_id", default=None)


def normalize_trace_id(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned[:TRACE_ID_MAX_LENGTH] or None


def ensure_trace_id(value: str | None = None) -> str:
    return normalize_trace_id(value) or uuid.uuid4().hex


def current_trace_id() -> str | None:
    return _current_trace.get()


@contextmanager
def trace_context(trace_id: str | None = None) -> Iterator[str]:
    resolved = ensure_trace_id(trace_id)
    token = _current_trace.set(resolved)
    try:
        yield resolved
    finally:
        _current_trace.reset(token)


def emit_structured_log(
    *,
    component: str,
    event: str,
    level: int = logging.INFO,
    trace_id: str | None = None,
    release_id: int | str | None = None,
    deployment_id: int | None = None,
    actor_id: str | None = None,
    **fields,
) -> None:
    payload: dict[str, object | None] = {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "event": event,
        "trace_id": normalize_trace_id(trace_id) or current_trace_id(),
        "release_id": release_id,
        "deployment_id": deployment_id,
    }
    if actor_id is not None:
        payload["actor_id"] = actor_id
    payload.update(fields)
    logging.getLogger(component).log(level, json.dumps(payload, sort_keys=True, default=str))
