import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional

from ...exceptions import APIException
from ...utils import utcnow
from ..ports.profile_repo import ProfileRepository
from ..ports.withdrawal_repo import BalanceChanged, WithdrawalDto, WithdrawalRepository
from .sliding_window import SlidingWindow

logger = logging.getLogger(__name__)

FEES: Dict[str, Dict[str, int]] = {
    "card": {"percent": 5, "min": 50, "max": 500},
    "yoomoney": {"percent": 3, "min": 30, "max": 300},
    "bank_account": {"percent": 2, "min": 20, "max": 200},
    "crypto": {"percent": 1, "min": 10, "max": 100},
}

MIN_AMOUNT = Decimal("100")
VERIFICATION_THRESHOLD = Decimal("15000")
ADMIN_NOTIFY_THRESHOLD = Decimal("50000")
DAILY_LIMIT = Decimal("50000")
VERIFIED_DAILY_LIMIT = Decimal("100000")
PROCESSING_TIME = "1-3 business days"

# Rejected and cancelled requests never left the balance
COUNTED_STATUSES = ("pending", "processing", "completed")

CENT = Decimal("0.01")


def calculate_fee(amount: Decimal, method: str) -> Decimal:
    config = FEES.get(method, FEES["card"])
    by_percent = Decimal(amount) * Decimal(config["percent"]) / Decimal(100)
    fee = max(Decimal(config["min"]), min(by_percent, Decimal(config["max"])))
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def daily_limit_for(verification_status: str) -> Decimal:
    return VERIFIED_DAILY_LIMIT if verification_status == "verified" else DAILY_LIMIT


@dataclass
class WithdrawalService:
    repo: WithdrawalRepository
    profiles: ProfileRepository
    clock: Callable[[], datetime] = utcnow

    def request_withdrawal(self, user_id: str, amount: Decimal, method: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
        if amount < MIN_AMOUNT:
            raise APIException(status_code=400, detail=f"Minimum withdrawal amount is {MIN_AMOUNT} RUB", code="AMOUNT_TOO_SMALL")
        if method not in FEES:
            raise APIException(status_code=400, detail=f"Unsupported withdrawal method: {method}", code="INVALID_METHOD")

        profile = self.profiles.get_by_id(user_id)
        if not profile:
            raise APIException(status_code=404, detail="Profile not found", code="PROFILE_NOT_FOUND")

        if profile.balance < amount:
            raise APIException(status_code=400, detail="Insufficient balance", code="INSUFFICIENT_FUNDS")

        verified = profile.verification_status == "verified"
        if amount > VERIFICATION_THRESHOLD and not verified:
            raise APIException(
                status_code=403,
                detail=f"Withdrawals above {VERIFICATION_THRESHOLD} RUB require a verified profile",
                code="VERIFICATION_REQUIRED",
            )

        now = self.clock()
        limit = daily_limit_for(profile.verification_status)
        window = SlidingWindow(window_seconds=24 * 3600, threshold=limit)
        decision = window.evaluate(self.repo.recent(user_id, now - timedelta(hours=24), COUNTED_STATUSES), now, weight=amount)
        if not decision.allowed:
            raise APIException(
                status_code=400,
                detail=f"Daily withdrawal limit exceeded. Available: {decision.remaining} RUB",
                code="DAILY_LIMIT_EXCEEDED",
                available=str(decision.remaining),
                retry_after_seconds=decision.retry_after_seconds,
            )

        fee = calculate_fee(amount, method)
        net_amount = amount - fee
        try:
            withdrawal = self.repo.create_request(
                user_id,
                amount,
                fee,
                net_amount,
                method,
                details or {},
                notify_admin=amount > ADMIN_NOTIFY_THRESHOLD,
            )
        except BalanceChanged:
            raise APIException(status_code=400, detail="Insufficient balance", code="INSUFFICIENT_FUNDS")
        logger.info(f"Withdrawal {withdrawal.id} requested by {user_id}: {amount} via {method}")
        return {
            "withdrawal": withdrawal,
            "fee": fee,
            "net_amount": net_amount,
            "estimated_processing": PROCESSING_TIME,
        }

    def list_withdrawals(self, user_id: str, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        profile = self.profiles.get_by_id(user_id)
        if not profile:
            raise APIException(status_code=404, detail="Profile not found", code="PROFILE_NOT_FOUND")

        items, total = self.repo.list_for_user(user_id, status, limit, offset)
        limit_amount = daily_limit_for(profile.verification_status)
        return {
            "withdrawals": items,
            "limits": {
                "min_amount": MIN_AMOUNT,
                "max_amount": limit_amount,
                "daily_limit": limit_amount,
                "available_balance": profile.balance,
                "pending_withdrawal": profile.pending_withdrawal,
                "processing_time": PROCESSING_TIME,
                "fees": FEES,
            },
            "pagination": {"total": total, "limit": limit, "offset": offset},
        }


def withdrawal_to_dict(w: WithdrawalDto) -> Dict[str, Any]:
    return {
        "id": w.id,
        "user_id": w.user_id,
        "amount": str(w.amount),
        "net_amount": str(w.net_amount),
        "fee": str(w.fee),
        "method": w.method,
        "status": w.status,
        "currency": w.currency,
        "details": w.details,
        "created_at": w.created_at.isoformat(),
    }
