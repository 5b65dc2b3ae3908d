"""FastAPI application entrypoint, error mapping, and health reporting.

Invariants:
- Health detail is only exposed to authenticated users or allowlisted hosts.
- Every surfaced error body carries ``detail`` and a machine-readable ``code``.
"""

import ipaddress
import logging
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.deps import get_optional_current_user
from app.api.router import api_router
from app.core.config import settings
from app.core.errors import CommsError, ConflictError
from app.jobs.schedule_registry import ensure_schedules
from app.models.user import User
from app.services.delivery_monitor import delivery_monitor

logger = logging.getLogger("app.main")

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.exception_handler(CommsError)
async def _comms_error_handler(request: Request, exc: CommsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


HTTP_ERROR_CODES = {401: "unauthorized", 403: "permission_denied", 404: "not_found", 405: "method_not_allowed"}


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({"detail": exc.errors(), "code": "validation_error"}),
    )


@app.exception_handler(IntegrityError)
async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.info("Integrity conflict on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content=ConflictError("Conflicting record already exists").to_payload())


@app.on_event("startup")
async def _register_schedules() -> None:
    """Register scheduled jobs on startup."""
    ensure_schedules()


def _summarize_delivery(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense delivery monitor state into health-friendly telemetry."""
    issues: list[dict[str, Any]] = []
    channels: dict[str, Any] = {}
    for channel, metrics in snapshot.items():
        circuit = metrics.get("circuit", {})
        remaining = float(circuit.get("remaining_cooldown") or 0.0)
        state = "ok"
        if remaining > 0:
            issues.append({"channel": channel, "reason": "circuit_open", "remaining_cooldown": remaining})
            state = "paused"
        elif metrics.get("last_error"):
            issues.append({"channel": channel, "reason": "last_error", "error": metrics["last_error"]})
            state = "degraded"
        channels[channel] = {**metrics, "state": state}
    return {"channels": channels, "issues": issues}


def _entry_matches(entry: str, candidate: str) -> bool:
    """Return True if an allowlist entry matches a candidate host/IP."""
    try:
        network = ipaddress.ip_network(entry, strict=False)
        return ipaddress.ip_address(candidate) in network
    except ValueError:
        return entry.casefold() == candidate.casefold()


def _ip_or_host_allowlisted(request: Request) -> bool:
    if not settings.health_allowlist:
        return False
    client_candidates: list[str] = []
    if request.client and request.client.host:
        client_candidates.append(request.client.host)
    host_header = request.headers.get("host")
    if host_header:
        client_candidates.append(host_header.split(":")[0])
    for candidate in client_candidates:
        for entry in settings.health_allowlist:
            if entry and _entry_matches(entry, candidate):
                return True
    return False


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(request: Request, current_user: User | None = Depends(get_optional_current_user)) -> dict[str, Any]:
    """Return health status and, for trusted callers, delivery telemetry."""
    if not current_user and not _ip_or_host_allowlisted(request):
        return {"status": "ok"}

    telemetry = _summarize_delivery(await delivery_monitor.snapshot())
    status = "ok" if not telemetry["issues"] else "degraded"
    return {"status": status, "delivery": telemetry}
