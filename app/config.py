"""
Application configuration from environment variables.

In development a .env file at the project root is loaded with python-dotenv
before any value is read. Validates critical secrets at module load; missing
values raise RuntimeError.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Environment: development | production (affects .env loading, error details)
ENV = os.getenv("ENV", "development").lower()

# Production should set env vars directly; existing vars are never overridden
if ENV == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# --- Required (raise if missing) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
JWT_SECRET = os.getenv("JWT_SECRET")

for name, val in [
    ("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID),
    ("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET),
    ("GOOGLE_REDIRECT_URI", GOOGLE_REDIRECT_URI),
    ("JWT_SECRET", JWT_SECRET),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

JWT_ALGORITHM = "HS256"

# --- Optional with defaults ---
# Frontend URL for post-login redirect; the session token travels in the query string
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def _int_env(key: str, default: int, minimum: int = 1) -> int:
    try:
        return max(minimum, int(os.getenv(key, str(default))))
    except ValueError:
        return default


# Session JWT lifetime in seconds (7 days)
JWT_MAX_AGE = _int_env("JWT_MAX_AGE", 7 * 24 * 3600, minimum=60)

# OAuth CSRF: cookie name for state parameter, short-lived
OAUTH_STATE_COOKIE_NAME = os.getenv("OAUTH_STATE_COOKIE_NAME", "oauth_state")
OAUTH_STATE_MAX_AGE = 600  # 10 minutes

GOOGLE_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Request timeouts (connect, read) in seconds
GOOGLE_REQUEST_TIMEOUT = (5, _int_env("GOOGLE_READ_TIMEOUT", 30))

# Event listing: day range accepted by GET /api/events
DEFAULT_DAYS = 7
MIN_DAYS = 1
MAX_DAYS = 365
# Up to this many days events are grouped by day, above it by week
GROUP_BY_DAY_MAX_DAYS = 7

# Sync window: this many days back and forward from now
SYNC_WINDOW_DAYS = _int_env("SYNC_WINDOW_DAYS", 90)
GOOGLE_EVENTS_PAGE_SIZE = 2500

# Timezone used for day/week boundaries (IANA name)
TIMEZONE = os.getenv("TIMEZONE", "UTC")

# Secure cookie flag (set True in production over HTTPS)
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "false").lower() in ("1", "true", "yes")

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calendar.db")

# Skip create_all at startup (set in production when using Alembic migrations)
SKIP_DB_INIT = os.getenv("SKIP_DB_INIT", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
