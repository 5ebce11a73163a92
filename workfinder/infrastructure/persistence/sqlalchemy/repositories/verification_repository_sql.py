from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....db.models import ACTIVE_STATUSES, TelegramVerification
from .....application.ports.verification_repo import (
    ActiveVerificationExists,
    VerificationDto,
    VerificationRepository,
)
from .....utils import as_utc


class SqlVerificationRepository(VerificationRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, v: TelegramVerification) -> VerificationDto:
        return VerificationDto(
            id=v.id,
            phone=v.phone,
            code=v.code,
            status=v.status,
            attempts=v.attempts,
            max_attempts=v.max_attempts,
            expires_at=as_utc(v.expires_at),
            created_at=as_utc(v.created_at),
            updated_at=as_utc(v.updated_at),
            telegram_user_id=v.telegram_user_id,
            failure_reason=v.failure_reason,
            last_sent_at=as_utc(v.last_sent_at),
            verified_at=as_utc(v.verified_at),
            meta=dict(v.meta or {}),
        )

    def _load(self, request_id: str) -> Optional[TelegramVerification]:
        return self.session.exec(select(TelegramVerification).where(TelegramVerification.id == request_id)).first()

    def get(self, request_id: str) -> Optional[VerificationDto]:
        v = self._load(request_id)
        return self._to_dto(v) if v else None

    def find_active(self, phone: str, now: datetime) -> Optional[VerificationDto]:
        v = self.session.exec(
            select(TelegramVerification)
            .where(TelegramVerification.phone == phone)
            .where(TelegramVerification.status.in_(ACTIVE_STATUSES))
            .where(TelegramVerification.expires_at > now)
            .order_by(TelegramVerification.created_at.desc())
        ).first()
        return self._to_dto(v) if v else None

    def request_times(self, phone: str, since: datetime) -> List[datetime]:
        rows = self.session.exec(
            select(TelegramVerification.created_at)
            .where(TelegramVerification.phone == phone)
            .where(TelegramVerification.created_at >= since)
            .order_by(TelegramVerification.created_at)
        ).all()
        return [as_utc(t) for t in rows]

    def create(self, phone: str, code: str, expires_at: datetime, max_attempts: int, meta: Dict[str, Any], now: datetime) -> VerificationDto:
        # Rows that timed out without being touched still hold the active-phone index slot
        self.session.execute(
            update(TelegramVerification)
            .where(TelegramVerification.phone == phone)
            .where(TelegramVerification.status.in_(ACTIVE_STATUSES))
            .where(TelegramVerification.expires_at <= now)
            .values(status="failed", failure_reason="expired", updated_at=now)
        )
        self.session.commit()

        rec = TelegramVerification(
            phone=phone,
            code=code,
            status="pending",
            attempts=0,
            max_attempts=max_attempts,
            expires_at=expires_at,
            meta=meta,
            created_at=now,
            updated_at=now,
        )
        self.session.add(rec)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ActiveVerificationExists(phone)
        self.session.refresh(rec)
        return self._to_dto(rec)

    def mark_sent(self, request_id: str, telegram_user_id: int, message_id: Optional[int], now: datetime) -> None:
        v = self._load(request_id)
        if not v or v.status not in ACTIVE_STATUSES:
            return
        v.status = "sent"
        v.telegram_user_id = telegram_user_id
        v.last_sent_at = now
        v.updated_at = now
        v.meta = {**(v.meta or {}), "message_id": message_id, "sent_at": now.isoformat()}
        self.session.add(v)
        self.session.commit()

    def mark_failed(self, request_id: str, reason: str, now: datetime, details: Optional[Dict[str, Any]] = None) -> None:
        v = self._load(request_id)
        if not v or v.status == "verified":
            return
        if v.failure_reason in ("expired", "max_attempts"):
            return
        v.status = "failed"
        v.failure_reason = reason
        v.updated_at = now
        if details:
            v.meta = {**(v.meta or {}), f"{reason}_details": details}
        self.session.add(v)
        self.session.commit()

    def register_attempt(self, request_id: str, expected_attempts: int, now: datetime, details: Optional[Dict[str, Any]] = None) -> bool:
        result = self.session.execute(
            update(TelegramVerification)
            .where(TelegramVerification.id == request_id)
            .where(TelegramVerification.attempts == expected_attempts)
            .where(TelegramVerification.attempts < TelegramVerification.max_attempts)
            .where(TelegramVerification.status != "verified")
            .values(attempts=expected_attempts + 1, updated_at=now)
        )
        self.session.commit()
        if result.rowcount != 1:
            return False
        if details:
            v = self._load(request_id)
            v.meta = {**(v.meta or {}), "last_attempt": details}
            self.session.add(v)
            self.session.commit()
        return True

    def release_attempt(self, request_id: str, counted_attempts: int, now: datetime) -> bool:
        # drop whatever the failed sign-in left pending on the shared session
        self.session.rollback()
        result = self.session.execute(
            update(TelegramVerification)
            .where(TelegramVerification.id == request_id)
            .where(TelegramVerification.attempts == counted_attempts)
            .where(TelegramVerification.status != "verified")
            .values(attempts=counted_attempts - 1, updated_at=now)
        )
        self.session.commit()
        return result.rowcount == 1

    def mark_verified(self, request_id: str, now: datetime) -> bool:
        result = self.session.execute(
            update(TelegramVerification)
            .where(TelegramVerification.id == request_id)
            .where(or_(
                TelegramVerification.status.in_(ACTIVE_STATUSES),
                and_(TelegramVerification.status == "failed", TelegramVerification.failure_reason == "delivery"),
            ))
            .values(status="verified", failure_reason=None, verified_at=now, updated_at=now)
        )
        self.session.commit()
        return result.rowcount == 1
