import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from threading import Lock, Thread

from .poller import COMPONENT, DeploymentSnapshot, RolloutStatusPoller

# The poller import puts the backend package on sys.path.
from app.services.observability import emit_structured_log  # noqa: E402


@dataclass
class PollState:
    """Outcome of the most recent poll cycle, shared with the health endpoint."""

    last_poll_at: datetime | None = None
    last_error: str | None = None
    deployment_count: int = 0
    ready_deployment_ids: list[int] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record(self, snapshots: list[DeploymentSnapshot]) -> None:
        with self._lock:
            self.last_poll_at = datetime.now(timezone.utc)
            self.last_error = None
            self.deployment_count = len(snapshots)
            self.ready_deployment_ids = [s.deployment_id for s in snapshots if s.can_confirm]

    def record_failure(self, exc: Exception) -> None:
        with self._lock:
            self.last_error = type(exc).__name__

    def to_payload(self) -> dict[str, object]:
        with self._lock:
            return {
                "status": "degraded" if self.last_error else "ok",
                "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
                "last_error": self.last_error,
                "in_progress_deployments": self.deployment_count,
                "ready_for_confirmation": list(self.ready_deployment_ids),
            }


class HealthHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path != "/health":
            self.send_response(404)
            self.end_headers()
            return

        body = json.dumps(self.server.poll_state.to_payload()).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args):
        return


def load_worker_env_defaults() -> None:
    env_path = Path(__file__).resolve().parents[1] / ".env"
    if not env_path.is_file():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        if key.strip():
            os.environ.setdefault(key.strip(), value.strip())


def build_health_server(state: PollState, host: str, port: int) -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), HealthHandler)
    server.poll_state = state
    return server


def run_cycle(poller: RolloutStatusPoller, state: PollState) -> None:
    try:
        snapshots = poller.poll_once()
    except Exception as exc:
        state.record_failure(exc)
        emit_structured_log(
            component=COMPONENT,
            event="worker_cycle_failed",
            level=logging.ERROR,
            error=type(exc).__name__,
        )
        logging.getLogger(COMPONENT).exception("worker_cycle_failed")
        return

    state.record(snapshots)
    if not snapshots:
        emit_structured_log(component=COMPONENT, event="worker_heartbeat")


def main() -> None:
    load_worker_env_defaults()
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    poll_interval = int(os.getenv("WORKER_POLL_INTERVAL_SECONDS", "5"))
    host = os.getenv("WORKER_HEALTH_HOST", "0.0.0.0")
    port = int(os.getenv("WORKER_HEALTH_PORT", "8090"))

    state = PollState()
    poller = RolloutStatusPoller()
    server = build_health_server(state, host, port)
    Thread(target=server.serve_forever, daemon=True).start()
    emit_structured_log(
        component=COMPONENT,
        event="worker_started",
        poll_interval_seconds=poll_interval,
        health_port=port,
    )

    while True:
        run_cycle(poller, state)
        time.sleep(poll_interval)


if __name__ == "__main__":
    main()
