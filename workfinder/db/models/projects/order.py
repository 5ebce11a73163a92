# workfinder/db/models/projects/order.py
from typing import Optional
from decimal import Decimal
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime
from datetime import datetime
import uuid

from ....utils import utcnow


class Order(SQLModel, table=True):
    __tablename__ = "orders"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    customer_id: Optional[str] = Field(default=None, foreign_key="profiles.id", index=True)
    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None)
    category: str = Field(max_length=50, index=True)
    city: Optional[str] = Field(default=None, max_length=100, index=True)
    budget: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    status: str = Field(default="active", max_length=20, index=True)
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    bids_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
