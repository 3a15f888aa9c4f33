from __future__ import annotations

import logging
import sys
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .config import get_settings
from .errors import ErrorKind, LedgerError


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Send application logs to stdout at the configured level."""
    level_name = (level or get_settings().log_level or "INFO").upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    if not any(getattr(h, "_studio_ledger", False) for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._studio_ledger = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)
    # SQL statements only when explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


class RequestTimingLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that measures request processing time and logs concise request/response info.

    Adds an 'X-Process-Time-Ms' header on responses to aid in quick diagnostics.
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("request")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers["X-Process-Time-Ms"] = str(duration_ms)

        self.logger.info(
            "method=%s path=%s status=%s duration_ms=%s ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.client.host if request.client else "?",
        )
        return response


def _error_payload(status: int, message: str, path: str, kind: Optional[str] = None, **extra) -> dict:
    error = {"status": status, "kind": kind, "message": message, "path": path}
    error.update({k: v for k, v in extra.items() if v is not None})
    return {"ok": False, "error": error}


def add_exception_handlers(app: FastAPI) -> None:
    """Register consistent error payload shapes for ledger, HTTP and generic exceptions."""

    error_logger = logging.getLogger("error")

    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError):
        if exc.kind.is_client_error:
            error_logger.info("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
        else:
            error_logger.error("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
        payload = _error_payload(
            exc.status,
            exc.message,
            request.url.path,
            kind=exc.kind.value,
            entity_id=getattr(exc, "entity_id", None),
            booking_id=getattr(exc, "booking_id", None),
            session_id=getattr(exc, "session_id", None),
        )
        return JSONResponse(status_code=exc.status, content=payload)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        payload = _error_payload(
            exc.status_code, exc.detail if isinstance(exc.detail, str) else "", request.url.path
        )
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(SQLAlchemyError)
    async def store_exception_handler(request: Request, exc: SQLAlchemyError):
        error_logger.exception("Store error on %s: %s", request.url.path, exc)
        payload = _error_payload(500, "Internal server error", request.url.path, kind=ErrorKind.INTEGRITY.value)
        return JSONResponse(status_code=500, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        error_logger.exception("Unhandled exception: %s", exc)
        payload = _error_payload(500, "Internal server error", request.url.path)
        return JSONResponse(status_code=500, content=payload)
