"""
Session JWTs.

The backend issues its own HS256 token after Google login; the browser keeps
it and sends it back as "Authorization: Bearer <token>". Claims: sub (local
user id as string), userId (same id as int, read by the client) and exp.
"""
from datetime import datetime, timedelta, UTC

from jose import jwt, JWTError

from config import JWT_SECRET, JWT_ALGORITHM, JWT_MAX_AGE


def create_jwt(user_id: int, *, now: datetime | None = None) -> str:
    """Session token for a local user id; exp = now + JWT_MAX_AGE (7 days by default)."""
    issued_at = now or datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "userId": user_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=JWT_MAX_AGE),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """Decode and verify a session token; raises JWTError if invalid or expired."""
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])


__all__ = ["JWTError", "create_jwt", "decode_jwt"]
