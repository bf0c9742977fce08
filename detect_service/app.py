"""FastAPI entry point for the text detection service.

Endpoints:
- POST /v1/jobs                     — Create a pending detection job
- GET  /v1/jobs/{id}                — Read a job visible to the caller
- GET  /v1/jobs/{id}/detections     — Detections in stored order (full text first)
- POST /v1/detect-text              — Run detection for a pending job
- GET  /liveness                    — Health check
- GET  /readiness                   — DB connectivity + Vision key check
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, cast

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from detect_service.auth import Identity, get_identity, is_public_path, require_auth_on_cloud_run
from detect_service.config import (
    DETECT_CORS_ALLOW_CREDENTIALS,
    DETECT_CORS_ALLOW_HEADERS,
    DETECT_CORS_ALLOW_METHODS,
    DETECT_CORS_ALLOW_ORIGINS,
    DETECT_LOG_LEVEL,
    DETECT_MAX_BODY_BYTES,
    DETECT_RATE_LIMIT_CREATE,
    DETECT_RATE_LIMIT_DEFAULT,
    DETECT_RATE_LIMIT_DETECT,
    VisionConfig,
)
from detect_service.db import check_db_connection, close_pool, get_pool, rls_connection
from detect_service.errors import DetectionError, NotFound
from detect_service.logging_config import (
    bind_request_id,
    generate_request_id,
    reset_request_id,
    setup_logging,
)
from detect_service.models import (
    CreateJobRequest,
    DetectionListResponse,
    DetectionResult,
    DetectTextRequest,
    DetectTextResponse,
    ErrorResponse,
    HealthResponse,
    JobResponse,
)
from detect_service.orchestrator import DetectionOrchestrator
from detect_service.stores.detected_text_store import DetectedTextStore
from detect_service.stores.detection_job_store import DetectionJobStore
from detect_service.vision.client import VisionClient

logger = logging.getLogger(__name__)

_job_store = DetectionJobStore()
_text_store = DetectedTextStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: one pool and one Vision client per process."""
    setup_logging(level=DETECT_LOG_LEVEL)
    require_auth_on_cloud_run()

    vision_cfg = VisionConfig.from_env()
    vision_cfg.validate()
    if not vision_cfg.has_credentials:
        logger.warning("GCP_VISION_API_KEY is not set; detection jobs will fail")
    vision = VisionClient(cfg=vision_cfg)
    app.state.vision_configured = vision_cfg.has_credentials
    app.state.orchestrator = DetectionOrchestrator(
        vision=vision, job_store=_job_store, text_store=_text_store
    )

    await get_pool()
    logger.info("Text detection service started")
    yield
    await vision.aclose()
    await close_pool()
    logger.info("Text detection service stopped")


app = FastAPI(
    title="Text Detection API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=[DETECT_RATE_LIMIT_DEFAULT])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": "Rate limit exceeded"})


# -- Error rendering ----------------------------------------------------------


@app.exception_handler(DetectionError)
async def _detection_error_handler(request: Request, exc: DetectionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    reason = first.get("msg", "invalid value")
    message = f"Invalid request: {field}: {reason}" if field else f"Invalid request: {reason}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


if DETECT_CORS_ALLOW_CREDENTIALS and "*" in DETECT_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=DETECT_CORS_ALLOW_ORIGINS,
    allow_credentials=DETECT_CORS_ALLOW_CREDENTIALS,
    allow_methods=DETECT_CORS_ALLOW_METHODS,
    allow_headers=DETECT_CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests whose declared body exceeds the transport limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            declared = int(content_length)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid Content-Length"})
        if declared > DETECT_MAX_BODY_BYTES:
            return JSONResponse(status_code=413, content={"error": "Request body too large"})
    return await call_next(request)


# -- Auth middleware ----------------------------------------------------------


@app.middleware("http")
async def auth_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Resolve the caller identity on all non-public paths."""
    if request.method == "OPTIONS" or is_public_path(request.url.path):
        return await call_next(request)

    try:
        identity = await get_identity(request)
        request.state.identity = identity
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    except Exception as e:
        logger.warning("Auth middleware error: %s", e)
        return JSONResponse(status_code=401, content={"error": "Authentication failed"})

    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    token = bind_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["x-request-id"] = request_id
    return response


def _get_identity(request: Request) -> Identity:
    """Dependency: extract identity from request state (set by middleware)."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return cast(Identity, identity)


def _get_orchestrator(request: Request) -> DetectionOrchestrator:
    """Dependency: the per-process orchestrator built in the lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return cast(DetectionOrchestrator, orchestrator)


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness(request: Request) -> HealthResponse:
    db_ok = await check_db_connection()
    if not db_ok:
        raise HTTPException(status_code=503, detail="Database unavailable")
    if not getattr(request.app.state, "vision_configured", False):
        return HealthResponse(status="degraded", error="GCP Vision API key not configured")
    return HealthResponse(status="ok")


# -- Jobs ---------------------------------------------------------------------


@app.post("/v1/jobs", response_model=JobResponse, status_code=201)
@limiter.limit(DETECT_RATE_LIMIT_CREATE)
async def create_job(
    request: Request,
    body: CreateJobRequest,
    identity: Annotated[Identity, Depends(_get_identity)],
) -> JobResponse:
    """Create a pending job owned by the caller (or unowned when anonymous)."""
    async with rls_connection(identity.user_id, identity.role) as conn:
        job = await _job_store.create_job(
            conn, image_url=body.image_url, user_id=identity.user_id
        )
    logger.info("Job %s created (owner=%s)", job["id"], identity.principal)
    return JobResponse(**job)


@app.get("/v1/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    identity: Annotated[Identity, Depends(_get_identity)],
) -> JobResponse:
    async with rls_connection(identity.user_id, identity.role) as conn:
        job = await _job_store.get_job(conn, job_id)
    if job is None:
        raise NotFound("Job not found")
    return JobResponse(**job)


@app.get("/v1/jobs/{job_id}/detections", response_model=DetectionListResponse)
async def list_detections(
    job_id: str,
    identity: Annotated[Identity, Depends(_get_identity)],
) -> DetectionListResponse:
    """Detections for a job; the first entry is the whole-image text."""
    async with rls_connection(identity.user_id, identity.role) as conn:
        job = await _job_store.get_job(conn, job_id)
        if job is None:
            raise NotFound("Job not found")
        rows = await _text_store.list_for_job(conn, job["id"])

    return DetectionListResponse(
        job_id=job["id"],
        detections=[DetectionResult(**r) for r in rows],
        total=len(rows),
    )


# -- Detect text --------------------------------------------------------------


@app.post(
    "/v1/detect-text",
    response_model=DetectTextResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 404, 409, 500)},
)
@limiter.limit(DETECT_RATE_LIMIT_DETECT)
async def detect_text(
    request: Request,
    body: DetectTextRequest,
    identity: Annotated[Identity, Depends(_get_identity)],
    orchestrator: Annotated[DetectionOrchestrator, Depends(_get_orchestrator)],
) -> DetectTextResponse:
    """Validate -> claim job -> Vision -> store detections -> complete."""
    outcome = await orchestrator.process(
        body.job_id or "",
        image_url=body.image_url,
        image_base64=body.image_base64,
        user_id=identity.user_id,
        role=identity.role,
    )
    return DetectTextResponse(
        success=True,
        message=outcome.message,
        detections=[DetectionResult(**r) for r in outcome.detections],
    )
