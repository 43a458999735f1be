# backend/helpdesk/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .apps.training import errors as training_errors
from .apps.training.router import router as training_router
from .apps.training.router_admin import router as training_admin_router

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    training_errors.NotFoundError: 404,
    training_errors.TerminalStateError: 409,
    training_errors.ValidationError: 422,
    training_errors.ConflictError: 409,
}

_HTTP_KINDS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to the desktop
    client's local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


def status_for_error(exc: training_errors.TrainingError) -> int:
    for error_cls, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_cls):
            return status_code
    return 400


app = FastAPI(title="Helpdesk Training API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(training_errors.TrainingError)
async def training_error_handler(request: Request, exc: training_errors.TrainingError):
    status_code = status_for_error(exc)
    if status_code >= 409:
        logger.info(
            "Training request rejected",
            extra={"path": request.url.path, "kind": exc.kind, "status_code": status_code},
        )
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


def _error_body(kind: str, message: str) -> dict:
    return {"error": {"kind": kind, "message": message}}


def _describe_validation_errors(errors) -> str:
    parts = []
    for error in errors:
        # Drop the request section ("body", "query", "path") from the location.
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "invalid value")
        parts.append(f"{'.'.join(location)}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    message = _describe_validation_errors(exc.errors())
    logger.info(
        "Training request failed validation",
        extra={"path": request.url.path, "detail": message},
    )
    return JSONResponse(
        status_code=422,
        content=_error_body(training_errors.ValidationError.kind, message),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_KINDS.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(kind, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Helpdesk training backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(training_router)
app.include_router(training_admin_router)
