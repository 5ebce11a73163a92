# workfinder/db/models/auth/verification.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, BigInteger, Index, text
from datetime import datetime
from typing import Optional, Dict, Any
import uuid

from ....utils import utcnow

ACTIVE_STATUSES = ("pending", "sent")


class TelegramVerification(SQLModel, table=True):
    __tablename__ = "telegram_verifications"
    __table_args__ = (
        # At most one active code per phone
        Index(
            "uq_telegram_verifications_active_phone",
            "phone",
            unique=True,
            sqlite_where=text("status IN ('pending', 'sent')"),
            postgresql_where=text("status IN ('pending', 'sent')"),
        ),
        Index("ix_telegram_verifications_phone_created", "phone", "created_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    phone: str = Field(max_length=20, index=True)
    code: str = Field(max_length=6)
    status: str = Field(default="pending", max_length=10)
    failure_reason: Optional[str] = Field(default=None, max_length=20)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    telegram_user_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False, default=dict))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_sent_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    verified_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AuthLog(SQLModel, table=True):
    __tablename__ = "auth_logs"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    auth_method: str = Field(default="telegram", max_length=20)
    phone: str = Field(max_length=20)
    telegram_user_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    verification_id: Optional[str] = Field(default=None)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None)
    success: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
