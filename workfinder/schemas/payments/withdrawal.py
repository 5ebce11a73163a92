# workfinder/schemas/payments/withdrawal.py
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal

WithdrawalMethod = Literal["card", "yoomoney", "bank_account", "crypto"]


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., ge=100, max_digits=14, decimal_places=2, description="Amount in RUB, at least 100")
    method: WithdrawalMethod
    details: Optional[Dict[str, Any]] = None
