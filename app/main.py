"""
Calendar backend: Google OAuth, local event store, day/week views, Google Calendar sync.

Configures logging, CORS, request logging, exception handlers, optional DB init.
"""
import logging
import sys
import time

import requests
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware

from config import ENV, FRONTEND_URL, LOG_LEVEL, SKIP_DB_INIT

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("calendar_backend")

from database import Base, engine
from auth import router as auth_router
from events import router as events_router

# Create DB tables if not skipping (production uses Alembic migrations)
if not SKIP_DB_INIT:
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Calendar Backend",
    description="Google login, local copy of Google Calendar events grouped by day or week, event creation and resync.",
)

# CORS: explicit origin only; the session token travels in the Authorization header
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

SKIP_LOGGING_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request: method, path, status, duration, user id when authenticated."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_LOGGING_PATHS:
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        user_id = getattr(request.state, "user_id", None)
        logger.info(
            "%s %s %d %.3fs user_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            user_id or "-",
        )
        return response


app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Bad query/body input is a client error: 400 with the field errors."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Resource already exists"})


@app.exception_handler(requests.HTTPError)
async def google_http_exception_handler(request: Request, exc: requests.HTTPError):
    """Map Google API status codes: 401 and 403 pass through, anything else is a 500."""
    status = exc.response.status_code if exc.response is not None else None
    logger.error("Google API error on %s %s: %s", request.method, request.url.path, exc)
    if status == 401:
        return JSONResponse(status_code=401, content={"detail": "Google API authentication failed"})
    if status == 403:
        return JSONResponse(status_code=403, content={"detail": "Google API access forbidden"})
    return _internal_error(exc, "Google API request failed")


@app.exception_handler(requests.RequestException)
async def google_network_exception_handler(request: Request, exc: requests.RequestException):
    logger.error("Google API unreachable on %s %s: %s", request.method, request.url.path, exc)
    return _internal_error(exc, "Google API request failed")


def _internal_error(exc: Exception, detail: str = "Internal server error") -> JSONResponse:
    """Generic 500; the exception text is only exposed in development."""
    content = {"detail": detail}
    if ENV == "development":
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    # Let FastAPI handle HTTPException (auth, explicit 400s, etc.)
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception("Unhandled exception: %s", exc)
    return _internal_error(exc)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(events_router)
