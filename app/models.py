"""
Data models for the calendar backend.

"""
from datetime import datetime, UTC

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime stored as UTC.

    SQLite drops tzinfo on the way out, so naive values read back are
    reinterpreted as UTC; Postgres returns aware values which are converted.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime cannot be stored; attach a timezone first")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class User(Base):
    """
    User identity and Google OAuth state.

    - id: local integer id; carried in the session JWT.
    - google_id: Google subject id, unique.
    - email, name: from Google profile; refreshed on every login.
    - encrypted_access_token / encrypted_refresh_token: Fernet-encrypted;
      decrypted only when calling Google APIs. Refresh token can be null
      until user completes consent with access_type=offline.
    - refresh_token_hash: SHA-256 of the plain refresh token, so that
      POST /auth/refresh can find the user without decrypting every row.
    - token_expiry: UTC time when the access token expires; null means the
      stored token is used as-is.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    google_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")

    # OAuth tokens encrypted at rest (crypto.encrypt / crypto.decrypt)
    encrypted_access_token = Column(Text, nullable=True)
    encrypted_refresh_token = Column(Text, nullable=True)
    refresh_token_hash = Column(String(64), nullable=True, index=True)
    token_expiry = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    events = relationship(
        "Event",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Event(Base):
    """
    Local copy of a calendar event owned by one user.

    google_event_id is null only for rows that were never mirrored; a given
    Google event is stored at most once per user.
    """
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("user_id", "google_event_id", name="uq_events_user_google_event"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    google_event_id = Column(String(1024), nullable=True)
    title = Column(String(1024), nullable=False)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="events")
