# workfinder/db/models/payments/withdrawal.py
from typing import Optional, Dict, Any
from decimal import Decimal
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, Index
from datetime import datetime
import uuid

from ....utils import utcnow


class Withdrawal(SQLModel, table=True):
    __tablename__ = "withdrawals"
    __table_args__ = (Index("ix_withdrawals_user_created", "user_id", "created_at"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="profiles.id")
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    net_amount: Decimal = Field(max_digits=14, decimal_places=2)
    fee: Decimal = Field(max_digits=14, decimal_places=2)
    method: str = Field(max_length=20)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False, default=dict))
    status: str = Field(default="pending", max_length=20)
    currency: str = Field(default="RUB", max_length=3)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class BalanceTransaction(SQLModel, table=True):
    __tablename__ = "balance_transactions"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    type: str = Field(max_length=30)
    status: str = Field(default="pending", max_length=20)
    reference_id: Optional[str] = Field(default=None)
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False, default=dict))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
