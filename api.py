"""
api.py

WHAT THIS FILE IS FOR
---------------------
This module defines the FastAPI application entrypoint for the
Webhook Upload Relay.

It is responsible for:
- Creating the FastAPI app instance (title/version/description)
- Registering middleware for:
    - CORS (browser front ends post files directly)
    - Correlation ID propagation (X-Correlation-Id)
- Registering exception handlers so that *every* failure reaches the
  caller as the canonical envelope:
    {success, message, error, errorKind, details, filename, fileType}
- Exposing HTTP endpoints:
    - GET /health and /healthz
    - POST /upload and /api/upload (primary public contract)

REQUEST/RESPONSE CONTRACT RULES
-------------------------------
- Request: multipart/form-data with exactly one file part named `file`.
- Response: the canonical envelope, camelCase at the top level.
  Keys inside `data` (the downstream payload) and `details` are
  preserved verbatim.
- HTTP status: 200 on success, otherwise the status chosen by
  functions/relay/error_taxonomy.py.

DESIGN INTENT
-------------
This file contains ONLY the HTTP layer:
- routing
- middleware
- exception handling
- response formatting / normalization

Intake, forwarding, normalization and error mapping live in:
- functions/relay/*
"""

from __future__ import annotations

import uuid
from typing import Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from functions.relay.error_taxonomy import map_intake_error, map_local_failure
from functions.relay.relay_service import RelayService
from functions.relay.upload_intake import IntakeError, read_upload
from functions.utils.json_naming_converter import convert_keys_snake_to_camel
from functions.utils.logging_config import setup_logging
from functions.utils.settings import get_settings
from schemas.output_schema import CanonicalEnvelope

logger = structlog.get_logger(__name__)

settings = get_settings()
setup_logging(settings)
relay = RelayService(settings)

app = FastAPI(
    title="Webhook Upload Relay",
    version="1.0.0",
    description=(
        "Relays uploaded files to a downstream webhook (e.g. an n8n workflow) "
        "and returns a normalized response envelope."
    ),
)

CORRELATION_HEADER = settings.correlation_header

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _get_or_create_correlation_id(request: Request) -> str:
    incoming = request.headers.get(CORRELATION_HEADER)
    return incoming.strip() if incoming and incoming.strip() else f"corr_{uuid.uuid4().hex}"


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or f"corr_{uuid.uuid4().hex}"


def _render(
    http_status: int,
    envelope: CanonicalEnvelope,
    correlation_id: str,
    extra_headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    # only top-level fields are dropped; nulls inside data/details are kept
    fields = {k: v for k, v in envelope.model_dump().items() if v is not None}
    payload = convert_keys_snake_to_camel(
        fields,
        preserve_container_keys=settings.preserve_container_keys,
    )
    headers = dict(extra_headers or {})
    headers[CORRELATION_HEADER] = correlation_id
    return JSONResponse(
        status_code=http_status,
        content=payload,
        headers=headers,
    )


# -------------------------------------------------------------------
# Middleware
# -------------------------------------------------------------------
@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = _get_or_create_correlation_id(request)
    request.state.correlation_id = correlation_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


# -------------------------------------------------------------------
# Exception handlers
# -------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    correlation_id = _correlation_id(request)

    sub_errors = []
    for err in exc.errors():
        field = ".".join(str(x) for x in err.get("loc", []) if x != "body") or "body"
        sub_errors.append(
            {
                "field": field,
                "errors": [{"code": err.get("type"), "message": err.get("msg")}],
            }
        )

    logger.info(
        "request_validation_failed",
        correlation_id=correlation_id,
        error_count=len(sub_errors),
    )

    status, envelope = map_local_failure(http_status=400, sub_errors=sub_errors)
    return _render(status, envelope, correlation_id)


# Registered on Starlette's base class so router 404/405 are covered too.
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    correlation_id = _correlation_id(request)

    logger.warning(
        "http_exception",
        correlation_id=correlation_id,
        status_code=exc.status_code,
        detail=str(exc.detail),
    )

    status, envelope = map_local_failure(http_status=exc.status_code, reason=str(exc.detail))
    return _render(status, envelope, correlation_id, extra_headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)

    logger.error(
        "unhandled_exception",
        correlation_id=correlation_id,
        error_type=type(exc).__name__,
        exc_info=exc,
    )

    status, envelope = map_local_failure(http_status=500, reason="unhandled_exception")
    return _render(status, envelope, correlation_id)


# -------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------
@app.get("/healthz")
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.service_name,
        "environment": settings.environment,
    }


@app.post("/api/upload")
@app.post("/upload")
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
) -> JSONResponse:
    correlation_id = _correlation_id(request)

    # ---------------------------------------------------------------
    # 1) Intake: reject before any network activity
    # ---------------------------------------------------------------
    try:
        upload = await read_upload(file, max_bytes=settings.max_upload_bytes)
    except IntakeError as exc:
        status, envelope = map_intake_error(exc)
        return _render(status, envelope, correlation_id)
    except Exception:  # noqa: BLE001
        logger.exception("upload_intake_failed")
        status, envelope = map_local_failure(http_status=500, reason="intake_failed")
        return _render(status, envelope, correlation_id)

    # ---------------------------------------------------------------
    # 2) Forward + classify (single attempt)
    # ---------------------------------------------------------------
    try:
        status, envelope = await relay.relay(upload, correlation_id=correlation_id)
    except Exception:  # noqa: BLE001
        logger.exception("relay_failed", filename=upload.original_filename)
        status, envelope = map_local_failure(
            http_status=500,
            reason="relay_failed",
            upload=upload,
        )

    return _render(status, envelope, correlation_id)


def run() -> None:
    """Console entrypoint: serve the app with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port)
