from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..application.services.withdrawal_service import WithdrawalService, withdrawal_to_dict
from ..exceptions import create_success_response
from ..schemas.payments.withdrawal import WithdrawalRequest
from .deps import get_current_user, get_withdrawal_service

router = APIRouter(prefix="/api/withdraw", tags=["Withdrawals"])


@router.post("")
def request_withdrawal(
    body: WithdrawalRequest,
    current_user: str = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    result = service.request_withdrawal(current_user, body.amount, body.method, body.details)
    return create_success_response(
        {
            "withdrawal": withdrawal_to_dict(result["withdrawal"]),
            "fee": str(result["fee"]),
            "netAmount": str(result["net_amount"]),
            "estimatedProcessing": result["estimated_processing"],
        },
        message="Withdrawal request created",
    )


@router.get("")
def list_withdrawals(
    status: Optional[str] = Query(None, max_length=20),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: str = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    result = service.list_withdrawals(current_user, status=status, limit=limit, offset=offset)
    limits = result["limits"]
    return create_success_response({
        "withdrawals": [withdrawal_to_dict(w) for w in result["withdrawals"]],
        "limits": {
            "minAmount": str(limits["min_amount"]),
            "maxAmount": str(limits["max_amount"]),
            "dailyLimit": str(limits["daily_limit"]),
            "availableBalance": str(limits["available_balance"]),
            "pendingWithdrawal": str(limits["pending_withdrawal"]),
            "processingTime": limits["processing_time"],
            "fees": limits["fees"],
        },
        "pagination": result["pagination"],
    })
