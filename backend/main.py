# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
FastAPI application factory.

Responsibilities
----------------
* Instantiate the FastAPI app.
* Register CORS middleware (credentials allowed: the refresh and trust
  cookies ride on cross-origin requests from the frontend).
* Mount the feature routers (auth, mfa, trusted devices, admin) under
  ``/api/v1``.
* Turn storage errors into an opaque 500 so nothing from the database
  reaches a caller.
* Load the runtime flags once at startup.
* Expose a /health endpoint for container liveness checks.
"""

import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError

from admin.router import router as admin_router
from auth.router import router as auth_router
from core.config import settings
from core.logger import logger
from core.runtime import runtime_flags
from database import SessionLocal
from devices.router import router as devices_router
from mfa.router import router as mfa_router

API_PREFIX = "/api/v1"

app = FastAPI(title="TrustGate", version="1.0.0")

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
# Only the configured frontend origin may send credentialed requests.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_base_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


# ---------------------------------------------------------------------------
# Request-logging middleware
# ---------------------------------------------------------------------------
# Logs every inbound request: method, path, client IP, status, latency.
# Bodies are NOT echoed – they carry passwords, codes and tokens.


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        client_ip = request.client.host if request.client else "unknown"

        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            request.url.path,
            client_ip,
            response.status_code,
            elapsed_ms,
        )
        return response


app.add_middleware(_RequestLogMiddleware)


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------


@app.exception_handler(SQLAlchemyError)
async def _storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "InternalError", "message": "Internal error"}},
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(mfa_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(admin_router, prefix=API_PREFIX)

# ---------------------------------------------------------------------------
# Lifecycle and health check
# ---------------------------------------------------------------------------


@app.on_event("startup")
def _on_startup():
    logger.info("TrustGate service starting up")
    db = SessionLocal()
    try:
        flags = runtime_flags.reload(db)
    finally:
        db.close()
    logger.info("Runtime flags loaded: %s", flags)


@app.on_event("shutdown")
async def _on_shutdown():
    logger.info("TrustGate service shutting down")


@app.get("/health")
def health():
    return {"status": "ok"}
