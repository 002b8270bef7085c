"""
User token models.

Just the data structure - no business logic or class methods.
All operations handled by the repository.
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..constants import Limits
from .db_base import JSON, EncryptedBinary, TimestampMixin, UTCDateTime, UUIDMixin, utc_now
from .db_config import Base


class UserToken(Base, UUIDMixin, TimestampMixin):
    """Issued bearer credential and its access policy."""

    __tablename__ = "user_tokens"

    # Secret: hash for lookup, encrypted copy for display
    token_hash = Column(String(64), nullable=False, unique=True)
    encrypted_token = Column(EncryptedBinary, nullable=False)

    username = Column(String(Limits.MAX_USERNAME_LENGTH), nullable=False, index=True)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)

    # Expiry
    expires_type = Column(String(10), nullable=False)
    expires_at = Column(UTCDateTime, nullable=True, index=True)

    # Policy
    max_ips = Column(Integer, nullable=False, default=0)
    curfew_start = Column(String(5), nullable=True)
    curfew_end = Column(String(5), nullable=True)

    # Usage
    last_used_at = Column(UTCDateTime, nullable=True)
    total_requests = Column(BigInteger, nullable=False, default=0)
    total_tokens_used = Column(BigInteger, nullable=False, default=0)

    seen_ips = relationship(
        "UserTokenIP", back_populates="token", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("ix_user_token_active", "enabled", "expires_at"),)


class UserTokenIP(Base, UUIDMixin):
    """One distinct source IP observed for a token."""

    __tablename__ = "user_token_ips"

    token_id = Column(
        String(36), ForeignKey("user_tokens.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ip_address = Column(String(Limits.MAX_IP_LENGTH), nullable=False)
    first_seen_at = Column(UTCDateTime, nullable=False, default=utc_now)

    token = relationship("UserToken", back_populates="seen_ips")

    __table_args__ = (UniqueConstraint("token_id", "ip_address", name="uq_user_token_ip"),)


class UserTokenDailyUsage(Base):
    """Per-token request and usage totals for one local calendar day."""

    __tablename__ = "user_token_daily_usage"

    # No foreign key: rows outlive the token so the day's total stays accurate
    token_id = Column(String(36), primary_key=True)
    usage_date = Column(Date, primary_key=True)
    request_count = Column(BigInteger, nullable=False, default=0)
    tokens_used = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("ix_user_token_daily_usage_date", "usage_date"),)


class UserTokenAccessLog(Base, UUIDMixin):
    """Denied access attempts, written best-effort."""

    __tablename__ = "user_token_access_log"

    token_id = Column(String(36), nullable=True, index=True)
    client_ip = Column(String(Limits.MAX_IP_LENGTH), nullable=True)
    reason = Column(String(32), nullable=False)
    occurred_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    context = Column(JSON, nullable=True)
