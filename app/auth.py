"""
Google OAuth 2.0 login, callback, session refresh, and current-user dependency.

- /auth/google redirects to Google with a CSRF state stored in a short-lived cookie.
- /auth/google/callback validates state, exchanges code for tokens, stores
  encrypted tokens on User, runs the initial calendar sync, and redirects to
  the frontend with the session JWT (or an error code) in the query string.
- /auth/refresh trades a Google refresh token for a new session JWT.
- /auth/me returns the current user.
- get_current_user dependency reads the bearer JWT and returns User.
- get_valid_access_token(user, db) returns a usable Google access token,
  refreshing it first when it has expired.
"""
import logging
import secrets
from datetime import datetime, timedelta, UTC
from urllib.parse import urlencode

import requests
from cryptography.fernet import InvalidToken
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import (
    FRONTEND_URL,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE,
    SECURE_COOKIES,
)
from crypto import decrypt, encrypt, token_digest
from database import get_db
from models import User
from schemas import UserOut
from security import JWTError, create_jwt, decode_jwt
from services import event_service, google_calendar

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

bearer_scheme = HTTPBearer(auto_error=False)


# Cookie flags: HttpOnly (no JS access), SameSite=Lax so the state cookie survives Google's redirect back
def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


def _frontend_redirect(**params: str) -> RedirectResponse:
    redirect = RedirectResponse(url=f"{FRONTEND_URL}?{urlencode(params)}")
    redirect.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return redirect


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency: read the bearer JWT, decode it, load User.
    Raises 401 if the header is missing, the JWT is invalid/expired or the user is gone.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    try:
        payload = decode_jwt(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    request.state.user_id = user.id
    return user


def _apply_refreshed_tokens(user: User, data: dict, now: datetime) -> str:
    """Store a token-endpoint refresh response on user; returns the new access token."""
    access_token = data["access_token"]
    user.encrypted_access_token = encrypt(access_token)
    # Keep the old expiry if Google did not send a lifetime
    if data.get("expires_in"):
        user.token_expiry = now + timedelta(seconds=int(data["expires_in"]))
    if data.get("refresh_token"):
        user.encrypted_refresh_token = encrypt(data["refresh_token"])
        user.refresh_token_hash = token_digest(data["refresh_token"])
    return access_token


def _stored_token(user: User, ciphertext: str | None) -> str | None:
    """Decrypt a stored Google token; 401 if it was encrypted with another key."""
    try:
        return decrypt(ciphertext)
    except InvalidToken:
        logger.warning("Stored Google token for user %s cannot be decrypted", user.id)
        raise HTTPException(
            status_code=401,
            detail="Stored Google credentials are unreadable; please log in again",
        )


def get_valid_access_token(
    user: User,
    db: Session,
    *,
    now: datetime | None = None,
) -> str:
    """
    Return a Google access token for this user. The stored token is used as-is
    while there is no expiry or now is before it; once expired it is refreshed
    with the stored refresh token and the user row is committed.
    Raises 401 if the refresh token is missing or the refresh fails. No retry.
    """
    now = now or datetime.now(UTC)
    access_token = _stored_token(user, user.encrypted_access_token)
    expiry = user.token_expiry
    if expiry is not None and now >= expiry:
        refresh_token = _stored_token(user, user.encrypted_refresh_token)
        if not refresh_token:
            raise HTTPException(
                status_code=401,
                detail="Google session expired; please log in again",
            )
        try:
            data = google_calendar.refresh_access_token(refresh_token)
        except (google_calendar.GoogleOAuthError, requests.RequestException) as e:
            logger.warning("Google token refresh failed for user %s: %s", user.id, e)
            raise HTTPException(
                status_code=401,
                detail="Failed to refresh Google token; please log in again",
            )
        access_token = _apply_refreshed_tokens(user, data, now)
        db.commit()
        logger.info("Refreshed Google access token for user %s", user.id)
    if not access_token:
        raise HTTPException(status_code=401, detail="No Google access token; please log in again")
    return access_token


def _upsert_user(db: Session, userinfo: dict, tokens: dict, now: datetime) -> User:
    """Create or update the user for a Google subject id; keeps old values Google did not resend."""
    access_token = tokens["access_token"]
    refresh_token = tokens.get("refresh_token")
    expires_in = tokens.get("expires_in")
    token_expiry = now + timedelta(seconds=int(expires_in)) if expires_in else None

    user = db.scalars(select(User).where(User.google_id == userinfo["sub"])).first()
    if not user:
        user = User(
            google_id=userinfo["sub"],
            email=userinfo.get("email") or "",
            name=userinfo.get("name") or "",
        )
        db.add(user)
    else:
        user.email = userinfo.get("email") or user.email
        user.name = userinfo.get("name") or user.name
    user.encrypted_access_token = encrypt(access_token)
    if refresh_token:
        user.encrypted_refresh_token = encrypt(refresh_token)
        user.refresh_token_hash = token_digest(refresh_token)
    user.token_expiry = token_expiry
    db.commit()
    return user


@router.get("/google")
def google_login():
    """
    Redirect to Google OAuth consent. Sets a short-lived cookie with a random
    state value and includes the same state in the redirect URL so the callback
    can verify the request was not forged (CSRF protection).
    """
    state = secrets.token_urlsafe(32)
    redirect = RedirectResponse(url=google_calendar.get_auth_url(state))
    redirect.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    return redirect


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Handle redirect from Google. Validates state cookie (CSRF), exchanges code
    for tokens, creates/updates User with encrypted tokens, pulls the last and
    next 90 days of events, and redirects to the frontend with ?token=<jwt>.
    Every failure redirects with ?error=<code> instead.
    """
    if error:
        return _frontend_redirect(error=error)
    if not code:
        return _frontend_redirect(error="no_code")

    state_cookie = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not state or not state_cookie or not secrets.compare_digest(state, state_cookie):
        return _frontend_redirect(error="invalid_state")

    now = datetime.now(UTC)
    try:
        tokens = google_calendar.exchange_code_for_tokens(code)
        access_token = tokens.get("access_token")
        if not access_token:
            return _frontend_redirect(error="no_token")

        userinfo = google_calendar.get_user_info(access_token)
        if not userinfo.get("sub"):
            return _frontend_redirect(error="no_user_info")

        user = _upsert_user(db, userinfo, tokens, now)
    except Exception:
        db.rollback()
        logger.exception("Google auth callback failed")
        return _frontend_redirect(error="auth_failed")

    # Initial import; login still succeeds if it fails
    try:
        event_service.sync_events(db, user, access_token, now=now)
    except Exception:
        db.rollback()
        logger.exception("Initial event sync failed for user %s", user.id)

    return _frontend_redirect(token=create_jwt(user.id, now=now))


class RefreshBody(BaseModel):
    """Request body for exchanging a Google refresh token for a new session token."""
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken", min_length=1)


@router.post("/refresh")
def refresh_session(body: RefreshBody, db: Session = Depends(get_db)):
    """
    Look the user up by refresh token, refresh the Google access token, and
    return a new session JWT. 401 if the token is unknown or Google rejects it.
    """
    user = db.scalars(
        select(User).where(User.refresh_token_hash == token_digest(body.refresh_token))
    ).first()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    now = datetime.now(UTC)
    try:
        data = google_calendar.refresh_access_token(body.refresh_token)
    except (google_calendar.GoogleOAuthError, requests.RequestException) as e:
        logger.warning("Session refresh failed for user %s: %s", user.id, e)
        raise HTTPException(status_code=401, detail="Failed to refresh token")

    _apply_refreshed_tokens(user, data, now)
    db.commit()
    return {"token": create_jwt(user.id, now=now)}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    """Return the current user's profile. Requires a valid bearer token."""
    return user
