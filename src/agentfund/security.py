"""
agentfund.security — Shared HTTP security utilities: logging, auth, middleware.

Used by agentfund.api.
"""

import hmac
import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from agentfund.errors import MarketError

# ─── Context var for request ID ────────────────────────────────────

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_BODY_BYTES = 1_048_576
MAX_REQUEST_ID_LEN = 64

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
}


# ─── Structured JSON logging ──────────────────────────────────────

class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = request_id_var.get("")
        return True


def setup_structured_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach one JSON handler to the ``agentfund`` logger.

    Every line carries ``service`` and the current request id; module
    loggers (``agentfund.funding`` and so on) propagate into it.
    """
    from pythonjsonlogger.json import JsonFormatter

    level = level or os.environ.get("AGENTFUND_LOG_LEVEL", "INFO")
    market_logger = logging.getLogger("agentfund")
    market_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not market_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": "agentfund"},
        ))
        handler.addFilter(RequestIdFilter())
        market_logger.addHandler(handler)

    return market_logger


logger = setup_structured_logging()


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ─── Request ID + Logging Middleware ──────────────────────────────

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, log its outcome, set response headers.

    A caller-supplied ``X-Request-ID`` is reused (truncated) so a client
    can correlate its sign-in and funding calls with server log lines.
    """

    async def dispatch(self, request: Request, call_next):
        rid = (request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])[:MAX_REQUEST_ID_LEN]
        token = request_id_var.set(rid)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Request failed", extra={
                    "method": request.method, "path": request.url.path,
                })
                raise

            fields = {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                "client": client_ip(request),
            }
            if response.status_code >= 500:
                logger.error("Request completed", extra=fields)
            else:
                logger.info("Request completed", extra=fields)

            response.headers["X-Request-ID"] = rid
            response.headers.update(SECURITY_HEADERS)
            return response
        finally:
            request_id_var.reset(token)


# ─── CORS configuration ──────────────────────────────────────────

def configure_cors(app, allowed_origins: Optional[list[str]] = None):
    """Add CORS middleware; origins come from ``ALLOWED_ORIGINS`` when not given."""
    origins = allowed_origins
    if not origins:
        env_origins = os.environ.get("ALLOWED_ORIGINS", "")
        if env_origins:
            origins = [o.strip() for o in env_origins.split(",") if o.strip()]
        else:
            origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Key", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )


# ─── Request body size limiter ───────────────────────────────────

class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse bodies whose declared length exceeds ``max_size`` with a 413."""

    def __init__(self, app, max_size: int = MAX_BODY_BYTES):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_size:
            logger.warning("Oversized body rejected", extra={
                "path": request.url.path, "content_length": int(declared),
            })
            return JSONResponse(status_code=413, content={
                "error": "PayloadTooLarge",
                "detail": f"Request body exceeds {self.max_size} bytes.",
            })
        return await call_next(request)


# ─── Exception handlers ──────────────────────────────────────────

async def market_error_handler(request: Request, exc: MarketError):
    """Core error kinds become JSON with the message passed through verbatim."""
    if exc.status_code in (401, 403):
        log_auth_failure(client_ip(request), exc.kind, request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s", type(exc).__name__, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ─── Admin auth dependency ───────────────────────────────────────

_admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def require_admin_key(request: Request, key: str = Security(_admin_key_header)) -> bool:
    """Operator routes (tier upgrades, stale sweeps) need ``ADMIN_API_KEY``."""
    admin_key = os.environ.get("ADMIN_API_KEY", "")
    if not admin_key:
        raise HTTPException(status_code=503, detail="Admin access not configured")
    if not key:
        log_auth_failure(client_ip(request), "missing admin key", request.url.path)
        raise HTTPException(status_code=401, detail="Missing admin key")
    if not hmac.compare_digest(key, admin_key):
        log_auth_failure(client_ip(request), "invalid admin key", request.url.path)
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return True


def log_auth_failure(ip: str, reason: str, endpoint: str = ""):
    logger.warning("Auth failure: %s on %s", reason, endpoint or "-",
                   extra={"event": "auth_failure", "ip": ip, "reason": reason, "endpoint": endpoint})


# ─── Apply all security to a FastAPI app ──────────────────────────

def apply_security(app, allowed_origins: Optional[list[str]] = None):
    """CORS, request logging, body limit and the error handlers, in one call."""
    configure_cors(app, allowed_origins)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
