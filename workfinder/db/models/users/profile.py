# workfinder/db/models/users/profile.py
from typing import Optional
from decimal import Decimal
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, BigInteger
from datetime import datetime
import uuid

from ....utils import utcnow


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = Field(default=None, max_length=20, unique=True, index=True)
    full_name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=100)
    telegram_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True, index=True))
    telegram_username: Optional[str] = Field(default=None, max_length=64)
    telegram_first_name: Optional[str] = Field(default=None, max_length=100)
    telegram_last_name: Optional[str] = Field(default=None, max_length=100)
    telegram_language_code: Optional[str] = Field(default=None, max_length=10)
    auth_method: str = Field(default="telegram", max_length=20)
    status: str = Field(default="active", max_length=20)
    role: str = Field(default="user", max_length=20)
    balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    pending_withdrawal: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    verification_status: str = Field(default="unverified", max_length=20)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
