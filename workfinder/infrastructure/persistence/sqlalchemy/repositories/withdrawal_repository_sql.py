from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlmodel import Session, select

from .....db.models import AdminNotification, BalanceTransaction, Notification, Profile, Withdrawal
from .....application.ports.withdrawal_repo import BalanceChanged, WithdrawalDto, WithdrawalRepository
from .....utils import as_utc, utcnow


class SqlWithdrawalRepository(WithdrawalRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, w: Withdrawal) -> WithdrawalDto:
        return WithdrawalDto(
            id=w.id,
            user_id=w.user_id,
            amount=Decimal(w.amount),
            net_amount=Decimal(w.net_amount),
            fee=Decimal(w.fee),
            method=w.method,
            status=w.status,
            currency=w.currency,
            created_at=as_utc(w.created_at),
            details=dict(w.details or {}),
        )

    def recent(self, user_id: str, since: datetime, statuses: Tuple[str, ...]) -> List[Tuple[datetime, Decimal]]:
        rows = self.session.exec(
            select(Withdrawal.created_at, Withdrawal.amount)
            .where(Withdrawal.user_id == user_id)
            .where(Withdrawal.created_at >= since)
            .where(Withdrawal.status.in_(statuses))
        ).all()
        return [(as_utc(created_at), Decimal(amount)) for created_at, amount in rows]

    def create_request(self, user_id: str, amount: Decimal, fee: Decimal, net_amount: Decimal, method: str, details: Dict[str, Any], notify_admin: bool) -> WithdrawalDto:
        """Reserve the amount and record the request in one transaction."""
        now = utcnow()
        reserved = self.session.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .where(Profile.balance >= amount)
            .values(
                balance=Profile.balance - amount,
                pending_withdrawal=Profile.pending_withdrawal + amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if reserved.rowcount != 1:
            self.session.rollback()
            raise BalanceChanged(user_id)

        w = Withdrawal(
            user_id=user_id,
            amount=amount,
            net_amount=net_amount,
            fee=fee,
            method=method,
            details=details,
            status="pending",
            currency="RUB",
            created_at=now,
            updated_at=now,
        )
        self.session.add(w)
        self.session.flush()

        self.session.add(BalanceTransaction(
            user_id=user_id,
            amount=-amount,
            type="withdrawal_request",
            status="pending",
            reference_id=w.id,
            meta={"method": method, "fee": str(fee), "net_amount": str(net_amount)},
        ))
        self.session.add(Notification(
            user_id=user_id,
            type="withdrawal_requested",
            title="Withdrawal requested",
            message=f"Withdrawal of {amount} RUB requested. Awaiting processing.",
            meta={"withdrawal_id": w.id, "amount": str(amount), "method": method},
        ))
        if notify_admin:
            self.session.add(AdminNotification(
                type="large_withdrawal",
                title="Large withdrawal request",
                message=f"User {user_id} requested a withdrawal of {amount} RUB",
                priority="high",
                meta={"user_id": user_id, "withdrawal_id": w.id, "amount": str(amount), "method": method},
            ))
        self.session.commit()
        self.session.refresh(w)
        return self._to_dto(w)

    def list_for_user(self, user_id: str, status: Optional[str], limit: int, offset: int) -> Tuple[List[WithdrawalDto], int]:
        query = select(Withdrawal).where(Withdrawal.user_id == user_id)
        count_query = select(func.count()).select_from(Withdrawal).where(Withdrawal.user_id == user_id)
        if status:
            query = query.where(Withdrawal.status == status)
            count_query = count_query.where(Withdrawal.status == status)
        rows = self.session.exec(
            query.order_by(Withdrawal.created_at.desc()).offset(offset).limit(limit)
        ).all()
        total = self.session.exec(count_query).one()
        return [self._to_dto(r) for r in rows], int(total)
