"""
Google service: OAuth token endpoint, userinfo and Calendar v3 REST calls.

Plain functions with no shared client object; every call receives the
credentials it needs, so nothing leaks between concurrent requests. All
calls use timeouts. Calendar/userinfo errors surface as requests.HTTPError;
token endpoint rejections as GoogleOAuthError.
"""
import logging
from datetime import datetime, UTC
from typing import Any
from urllib.parse import urlencode

import requests

from config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_EVENTS_PAGE_SIZE,
    GOOGLE_REDIRECT_URI,
    GOOGLE_REQUEST_TIMEOUT,
    GOOGLE_SCOPES,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"


class GoogleOAuthError(Exception):
    """Raised when Google's token endpoint rejects a code or refresh token."""

    def __init__(self, msg: str, error: str | None = None):
        self.msg = msg
        self.error = error
        super().__init__(msg)


def _google_request(
    method: str,
    url: str,
    access_token: str,
    **kwargs: Any,
) -> dict | None:
    """Call a Google API with a bearer token and timeout; returns JSON. Raises on HTTP errors."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if "headers" in kwargs:
        headers.update(kwargs.pop("headers"))
    kwargs.setdefault("timeout", GOOGLE_REQUEST_TIMEOUT)
    resp = requests.request(method, url, headers=headers, **kwargs)
    resp.raise_for_status()
    if resp.content:
        return resp.json()
    return None


def _token_request(data: dict) -> dict:
    """POST to the OAuth token endpoint; raises GoogleOAuthError when Google reports an error."""
    resp = requests.post(
        TOKEN_URL,
        data={
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            **data,
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=GOOGLE_REQUEST_TIMEOUT,
    )
    try:
        payload = resp.json()
    except ValueError:
        raise GoogleOAuthError(
            f"Token endpoint returned non-JSON response (HTTP {resp.status_code})"
        )
    if "error" in payload:
        raise GoogleOAuthError(
            payload.get("error_description") or payload["error"],
            error=payload["error"],
        )
    if not resp.ok:
        raise GoogleOAuthError(f"Token endpoint returned HTTP {resp.status_code}")
    return payload


def get_auth_url(state: str) -> str:
    """Consent URL asking for offline calendar access; prompt=consent so a refresh token is issued."""
    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def exchange_code_for_tokens(code: str) -> dict:
    """
    Exchange an authorization code for tokens.
    Returns Google's payload: access_token, expires_in, and refresh_token when granted.
    """
    tokens = _token_request({
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": GOOGLE_REDIRECT_URI,
    })
    logger.info(
        "Google code exchange: access_token=%s refresh_token=%s expires_in=%s",
        "present" if tokens.get("access_token") else "missing",
        "present" if tokens.get("refresh_token") else "missing",
        tokens.get("expires_in"),
    )
    return tokens


def get_user_info(access_token: str) -> dict:
    """OpenID userinfo for the token owner (sub, email, name)."""
    return _google_request("GET", USERINFO_URL, access_token) or {}


def refresh_access_token(refresh_token: str) -> dict:
    """Trade a refresh token for a new access token (and possibly a rotated refresh token)."""
    return _token_request({
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })


def _rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def list_events(access_token: str, time_min: datetime, time_max: datetime) -> list[dict]:
    """
    All events on the primary calendar between time_min and time_max, with
    recurring events expanded into instances, ordered by start. Follows
    nextPageToken until exhausted.
    """
    items: list[dict] = []
    params = {
        "timeMin": _rfc3339(time_min),
        "timeMax": _rfc3339(time_max),
        "maxResults": GOOGLE_EVENTS_PAGE_SIZE,
        "singleEvents": "true",
        "orderBy": "startTime",
    }
    while True:
        page = _google_request("GET", EVENTS_URL, access_token, params=params) or {}
        items.extend(page.get("items", []))
        page_token = page.get("nextPageToken")
        if not page_token:
            break
        params["pageToken"] = page_token
    return items


def build_event_body(title: str, start_time: datetime, end_time: datetime) -> dict:
    """Calendar v3 event resource with UTC date-times."""
    return {
        "summary": title,
        "start": {"dateTime": _rfc3339(start_time), "timeZone": "UTC"},
        "end": {"dateTime": _rfc3339(end_time), "timeZone": "UTC"},
    }


def insert_event(access_token: str, event: dict) -> dict:
    """Create an event on the primary calendar; returns the created resource (with its id)."""
    return _google_request("POST", EVENTS_URL, access_token, json=event) or {}
