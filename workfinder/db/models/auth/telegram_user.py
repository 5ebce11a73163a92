# workfinder/db/models/auth/telegram_user.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, BigInteger
from datetime import datetime
from typing import Optional

from ....utils import utcnow


class TelegramUser(SQLModel, table=True):
    __tablename__ = "telegram_users"
    id: Optional[int] = Field(default=None, primary_key=True)
    telegram_id: int = Field(sa_column=Column(BigInteger, unique=True, nullable=False))
    username: Optional[str] = Field(default=None, max_length=64)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    language_code: Optional[str] = Field(default=None, max_length=10)
    phone: Optional[str] = Field(default=None, max_length=20, index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    last_seen: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    last_auth: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
