# workfinder/db/models/users/session.py
from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime
from datetime import datetime
import uuid

from ....utils import utcnow


class UserSession(SQLModel, table=True):
    __tablename__ = "user_sessions"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    token: str = Field(max_length=1000)
    refresh_token: str = Field(max_length=1000, index=True)
    device_info: Optional[str] = Field(default=None)
    ip_address: Optional[str] = Field(max_length=45, default=None)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
