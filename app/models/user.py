import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint

from app.database import Base

# oauth_id prefix for users registered by an admin but not yet linked
PENDING_OAUTH_PREFIX = "temp-"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("provider", "oauth_id", name="uq_users_provider_oauth_id"),)

    id = Column(String(36), primary_key=True, default=new_id)
    alias = Column(String(50), unique=True, nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    oauth_id = Column(String(255), nullable=False)
    oauth_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    image = Column(String(1024), nullable=True)
    is_authorized = Column(Boolean, nullable=False, default=False)
    # set by revoke; a revoked row is never re-linked or finalized
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_pending(self) -> bool:
        return not self.is_authorized and self.oauth_id.startswith(PENDING_OAUTH_PREFIX)

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
