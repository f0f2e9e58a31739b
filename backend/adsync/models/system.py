"""Operational tables: stored service credentials, rate-limit counters, API call log."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from adsync.database import Base
from adsync.models.ads import utcnow


class SystemToken(Base):
    """Encrypted long-lived system user token."""

    __tablename__ = "system_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # Fernet ciphertext
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    scope: Mapped[str | None] = mapped_column(Text)
    system_user_id: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RateLimitRecord(Base):
    """Fixed-window request counter; the id embeds the window bucket."""

    __tablename__ = "rate_limits"
    __table_args__ = (Index("ix_rate_limits_endpoint_window", "endpoint", "window_start"),)

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # md5(identifier-bucket)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    requests_count: Mapped[int] = mapped_column(Integer, default=1)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ApiLog(Base):
    __tablename__ = "api_logs"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    endpoint: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, index=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer)
    request_size_bytes: Mapped[int | None] = mapped_column(Integer)
    response_size_bytes: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
