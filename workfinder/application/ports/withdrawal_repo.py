from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


class BalanceChanged(Exception):
    """The balance no longer covers the amount when the reservation is written."""


@dataclass
class WithdrawalDto:
    id: str
    user_id: str
    amount: Decimal
    net_amount: Decimal
    fee: Decimal
    method: str
    status: str
    currency: str
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)


class WithdrawalRepository:
    def recent(self, user_id: str, since: datetime, statuses: Tuple[str, ...]) -> List[Tuple[datetime, Decimal]]:
        ...

    def create_request(self, user_id: str, amount: Decimal, fee: Decimal, net_amount: Decimal, method: str, details: Dict[str, Any], notify_admin: bool) -> WithdrawalDto:
        ...

    def list_for_user(self, user_id: str, status: Optional[str], limit: int, offset: int) -> Tuple[List[WithdrawalDto], int]:
        ...
