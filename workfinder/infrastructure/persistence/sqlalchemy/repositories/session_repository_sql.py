from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .....db.models import AuthLog, UserSession
from .....application.ports.session_repo import SessionRepository, SessionDto
from .....utils import as_utc


class SqlSessionRepository(SessionRepository):
    def __init__(self, session: Session):
        self.session = session

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def create(self, user_id: str, token: str, refresh_token: str, expires_at: datetime, ip_address: Optional[str] = None, device_info: Optional[str] = None) -> SessionDto:
        rec = UserSession(
            user_id=user_id,
            token=token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            ip_address=ip_address,
            device_info=device_info,
        )
        self.session.add(rec)
        self._commit()
        self.session.refresh(rec)
        return SessionDto(
            id=rec.id,
            user_id=rec.user_id,
            token=rec.token,
            refresh_token=rec.refresh_token,
            expires_at=as_utc(rec.expires_at),
            created_at=as_utc(rec.created_at),
        )

    def revoke(self, session_id: str) -> None:
        self.session.execute(delete(UserSession).where(UserSession.id == session_id))
        self._commit()

    def record_login(self, user_id: str, phone: str, telegram_user_id: Optional[int], verification_id: str, ip_address: Optional[str], user_agent: Optional[str]) -> None:
        self.session.add(AuthLog(
            user_id=user_id,
            auth_method="telegram",
            phone=phone,
            telegram_user_id=telegram_user_id,
            verification_id=verification_id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=True,
        ))
        self._commit()
