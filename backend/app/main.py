import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.deployments import router as deployments_router
from app.api.devices import router as devices_router
from app.api.health import router as health_router
from app.api.releases import router as releases_router
from app.api.rollout import router as rollout_router
from app.core.config import get_settings
from app.services.observability import emit_structured_log, trace_context

settings = get_settings()
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


app = FastAPI(title=settings.app_name)
if settings.cors_allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def trace_and_request_log_middleware(request: Request, call_next):
    with trace_context(request.headers.get("x-trace-id")) as trace_id:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Trace-Id"] = trace_id
            return response
        finally:
            path_params = request.scope.get("path_params") or {}
            emit_structured_log(
                component="api",
                event="http_request",
                release_id=path_params.get("release_id"),
                actor_id=request.headers.get("x-actor-id"),
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )


app.include_router(health_router)
app.include_router(releases_router)
app.include_router(deployments_router)
app.include_router(rollout_router)
app.include_router(devices_router)
